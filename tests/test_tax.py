"""Testes da escolha do imposto ativo."""

from decimal import Decimal

import pytest
from sqlmodel import select

from garage.errors import TaxNotConfiguredError
from garage.models import Tax
from garage.repository import SqlGateway
from garage.tax import GatewayTaxRateProvider, TaxSnapshot, select_active_tax


class TestSelectActiveTax:
    def test_prefers_default(self):
        taxes = [
            Tax(tax_id=1, code="IVA", tax_rate=Decimal("19")),
            Tax(tax_id=2, code="ESPECIAL", tax_rate=Decimal("10"), is_default=True),
        ]
        assert select_active_tax(taxes).tax_id == 2

    def test_falls_back_to_iva(self):
        taxes = [
            Tax(tax_id=1, code="ISC", tax_rate=Decimal("5")),
            Tax(tax_id=2, code="IVA", tax_rate=Decimal("19")),
        ]
        assert select_active_tax(taxes).tax_id == 2

    def test_falls_back_to_first(self):
        taxes = [
            Tax(tax_id=3, code="ISC", tax_rate=Decimal("5")),
            Tax(tax_id=4, code="OUTRO", tax_rate=Decimal("7")),
        ]
        assert select_active_tax(taxes).tax_id == 3

    def test_no_taxes(self):
        with pytest.raises(TaxNotConfiguredError):
            select_active_tax([])


class TestGatewayTaxRateProvider:
    def test_reads_snapshot(self, session, workshop):
        provider = GatewayTaxRateProvider(SqlGateway(session))
        assert provider.active_tax_rate() == TaxSnapshot(tax_id=workshop.tax_id, rate=Decimal("19"))

    def test_reflects_configuration_changes(self, session, workshop):
        tax = session.exec(select(Tax)).one()
        tax.tax_rate = Decimal("21")
        session.add(tax)
        session.commit()

        snapshot = GatewayTaxRateProvider(SqlGateway(session)).active_tax_rate()
        assert snapshot.rate == Decimal("21")

    def test_empty_configuration(self, session):
        with pytest.raises(TaxNotConfiguredError):
            GatewayTaxRateProvider(SqlGateway(session)).active_tax_rate()
