"""Fixtures de teste: banco SQLite em memória com uma oficina de exemplo."""

from decimal import Decimal
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, create_engine
from sqlalchemy.pool import StaticPool

from garage.database import create_db_and_tables, get_session
from garage.main import app
from garage.models import (
    Product,
    Quotation,
    QuotationStatus,
    StockProduct,
    Tax,
    Vehicle,
    WorkProductDetail,
)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def workshop(session):
    """Veículo, dois produtos com estoque e IVA 19% como imposto padrão.

    Produto A: 1000 com 10% de margem (cobra 1100), estoque 5.
    Produto B: 2000 sem margem, estoque 3.
    """
    vehicle = Vehicle(license_plate="ABCD12", model_name="Toyota Hilux", year=2019, owner_name="Juan Pérez")
    other_vehicle = Vehicle(license_plate="WXYZ98", model_name="Nissan V16", year=2008)
    product_a = Product(product_name="Pastilha de freio", sale_price=Decimal("1000"), profit_margin=Decimal("10"))
    product_b = Product(product_name="Filtro de óleo", sale_price=Decimal("2000"), profit_margin=Decimal("0"))
    tax = Tax(code="IVA", tax_rate=Decimal("19"), is_default=True)
    session.add_all([vehicle, other_vehicle, product_a, product_b, tax])
    session.commit()

    stock_a = StockProduct(product_id=product_a.product_id, quantity=5)
    stock_b = StockProduct(product_id=product_b.product_id, quantity=3)
    session.add_all([stock_a, stock_b])
    session.commit()

    return SimpleNamespace(
        vehicle_id=vehicle.vehicle_id,
        other_vehicle_id=other_vehicle.vehicle_id,
        product_a=product_a.product_id,
        product_b=product_b.product_id,
        stock_a=stock_a.stock_product_id,
        stock_b=stock_b.stock_product_id,
        tax_id=tax.tax_id,
    )


def add_quotation(session, workshop, status=QuotationStatus.APPROVED, snapshot=True, vehicle_id=None):
    """Orçamento já precificado: 2 x A (1100) + 1 x B (2000) com 500 de mão de obra."""
    quotation = Quotation(
        vehicle_id=vehicle_id or workshop.vehicle_id,
        description="Revisão de freios",
        quotation_status=status,
        total_price=Decimal("5593"),
        subtotal=Decimal("4700") if snapshot else None,
        tax_amount=Decimal("893") if snapshot else None,
        tax_rate=Decimal("19") if snapshot else None,
    )
    session.add(quotation)
    session.commit()
    session.add_all([
        WorkProductDetail(
            quotation_id=quotation.quotation_id, product_id=workshop.product_a, quantity=2,
            sale_price=Decimal("1100"), labor_price=Decimal("0"), discount=Decimal("0"),
            tax_id=workshop.tax_id, applied_tax_rate=Decimal("19"),
        ),
        WorkProductDetail(
            quotation_id=quotation.quotation_id, product_id=workshop.product_b, quantity=1,
            sale_price=Decimal("2000"), labor_price=Decimal("500"), discount=Decimal("0"),
            tax_id=workshop.tax_id, applied_tax_rate=Decimal("19"),
        ),
    ])
    session.commit()
    return quotation.quotation_id


@pytest.fixture
def client(engine):
    def override_get_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    yield TestClient(app)
    app.dependency_overrides.clear()
