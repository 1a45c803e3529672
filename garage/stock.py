"""Conciliação de estoque: verifica disponibilidade e aplica as baixas."""

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Protocol

from garage.errors import GarageError, InsufficientStockError, StockUpdateError
from garage.gateway import PersistenceGateway
from garage.models import Product, StockProduct

logger = logging.getLogger(__name__)


class StockLine(Protocol):
    product_id: int
    quantity: int


@dataclass(frozen=True)
class AppliedDecrement:
    product_id: int
    quantity: int


def requested_quantities(lines: Iterable[StockLine]) -> dict[int, int]:
    """Soma as quantidades por produto, mantendo a ordem de aparição."""
    requested: dict[int, int] = {}
    for line in lines:
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity
    return requested


class StockReconciliationService:
    def __init__(self, gateway: PersistenceGateway):
        self.gateway = gateway

    def verify_availability(
        self,
        lines: Iterable[StockLine],
        stock_snapshot: Iterable[StockProduct],
        products: Optional[Mapping[int, Product]] = None,
    ) -> None:
        """Confere todos os itens contra o snapshot de estoque.

        Falha no primeiro produto sem estoque suficiente; nada é alterado aqui.
        """
        available = {record.product_id: record.quantity for record in stock_snapshot}
        for product_id, quantity in requested_quantities(lines).items():
            current = available.get(product_id, 0)
            if product_id not in available or current < quantity:
                name = products[product_id].product_name if products and product_id in products else None
                logger.warning(
                    "Estoque insuficiente: produto=%s disponível=%s solicitado=%s",
                    product_id, current, quantity,
                )
                raise InsufficientStockError(product_id, current, quantity, name)

    def decrement(
        self, lines: Iterable[StockLine], applied: Optional[list[AppliedDecrement]] = None
    ) -> list[AppliedDecrement]:
        """Aplica a baixa de cada produto com a operação condicional do gateway.

        As baixas já aplicadas são acumuladas em `applied` para permitir estorno.
        """
        if applied is None:
            applied = []
        for product_id, quantity in requested_quantities(lines).items():
            if not self.gateway.decrement_stock(product_id, quantity):
                # Outro fluxo consumiu o estoque depois da verificação
                raise StockUpdateError(product_id, quantity, "estoque insuficiente no momento da baixa")
            applied.append(AppliedDecrement(product_id, quantity))
            logger.info("Baixa de estoque: produto=%s quantidade=%s", product_id, quantity)
        return applied

    def restore(self, applied: Iterable[AppliedDecrement]) -> list[AppliedDecrement]:
        """Estorna baixas aplicadas. Retorna as que não puderam ser estornadas."""
        failed = []
        for item in applied:
            try:
                self.gateway.restore_stock(item.product_id, item.quantity)
            except GarageError as exc:
                logger.error("Falha ao estornar estoque do produto %s: %s", item.product_id, exc)
                failed.append(item)
        return failed
