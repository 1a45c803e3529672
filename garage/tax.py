"""Snapshot da taxa de imposto ativa.

O compositor de ordens lê a taxa uma única vez, no momento da criação, e grava o
valor na ordem e em cada item. Mudanças posteriores na configuração de impostos
nunca alteram ordens já gravadas.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Protocol

from garage.errors import TaxNotConfiguredError
from garage.gateway import PersistenceGateway
from garage.models import Tax
from garage.pricing import to_decimal

logger = logging.getLogger(__name__)

DEFAULT_TAX_CODE = "IVA"


@dataclass(frozen=True)
class TaxSnapshot:
    tax_id: int
    rate: Decimal


class TaxRateProvider(Protocol):
    def active_tax_rate(self) -> TaxSnapshot:
        ...


def select_active_tax(taxes: Iterable[Tax]) -> Tax:
    """Escolhe o imposto ativo: o marcado como padrão, senão o IVA, senão o primeiro."""
    taxes = list(taxes)
    for tax in taxes:
        if tax.is_default:
            return tax
    for tax in taxes:
        if tax.code == DEFAULT_TAX_CODE:
            return tax
    if taxes:
        return taxes[0]
    raise TaxNotConfiguredError()


class GatewayTaxRateProvider:
    """Lê o imposto ativo através do gateway de persistência."""

    def __init__(self, gateway: PersistenceGateway):
        self.gateway = gateway

    def active_tax_rate(self) -> TaxSnapshot:
        tax = self.gateway.get_active_tax()
        snapshot = TaxSnapshot(tax_id=tax.tax_id, rate=to_decimal(tax.tax_rate))
        logger.debug("Imposto ativo: id=%s taxa=%s%%", snapshot.tax_id, snapshot.rate)
        return snapshot
