from typing import Optional
from sqlmodel import Field, SQLModel
from sqlalchemy import CheckConstraint
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from garage.errors import InvalidStatusTransitionError

# --- Enums ---
class WorkOrderStatus(str, Enum):
    """Status possíveis para uma Ordem de Trabalho (sequência linear)."""
    NOT_STARTED = "not_started"  # Não iniciada
    IN_PROGRESS = "in_progress"  # Em andamento
    FINISHED = "finished"        # Finalizada


class QuotationStatus(str, Enum):
    """Status de um Orçamento. Aprovado e rejeitado são finais."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


# Próximo status permitido a partir de cada status
STATUS_FLOW = {
    WorkOrderStatus.NOT_STARTED: WorkOrderStatus.IN_PROGRESS,
    WorkOrderStatus.IN_PROGRESS: WorkOrderStatus.FINISHED,
}


def advance_status(current: WorkOrderStatus, requested: WorkOrderStatus) -> WorkOrderStatus:
    """Valida a transição de status. Só é permitido avançar um passo."""
    current = WorkOrderStatus(current)
    requested = WorkOrderStatus(requested)
    if STATUS_FLOW.get(current) != requested:
        raise InvalidStatusTransitionError(current.value, requested.value)
    return requested


def _money(**kwargs):
    return Field(max_digits=12, decimal_places=2, **kwargs)


# --- Modelos de Dados (Tabelas) ---

class Vehicle(SQLModel, table=True):
    """
    Veículo atendido pela oficina.
    Somente leitura para o fluxo de ordens de trabalho.
    """
    vehicle_id: Optional[int] = Field(default=None, primary_key=True)
    license_plate: str = Field(unique=True, description="Placa (patente) do veículo")
    model_name: str = Field(description="Marca e modelo (ex: Toyota Hilux)")
    year: Optional[int] = None
    owner_name: Optional[str] = Field(default=None, description="Pessoa ou empresa proprietária")


class Product(SQLModel, table=True):
    """
    Produto (peça ou insumo) do catálogo.
    O preço cobrado é o preço de venda acrescido da margem de lucro.
    """
    product_id: Optional[int] = Field(default=None, primary_key=True)
    product_name: str
    description: str = ""
    sale_price: Decimal = _money(description="Preço base de venda")
    profit_margin: Decimal = Field(default=Decimal("0"), max_digits=5, decimal_places=2, description="Margem de lucro (%)")
    last_purchase_price: Decimal = _money(default=Decimal("0"), description="Preço da última compra")
    supplier_id: Optional[int] = None
    product_type_id: Optional[int] = None


class StockProduct(SQLModel, table=True):
    """
    Estoque de um produto. Um registro por produto.
    """
    __tablename__ = "stock_product"
    __table_args__ = (CheckConstraint("quantity >= 0", name="ck_stock_quantity_non_negative"),)

    stock_product_id: Optional[int] = Field(default=None, primary_key=True)
    product_id: int = Field(foreign_key="product.product_id", unique=True)
    quantity: int = Field(default=0, ge=0, description="Quantidade atual em estoque")
    updated_at: datetime = Field(default_factory=datetime.now)


class Tax(SQLModel, table=True):
    """
    Imposto configurado (ex: IVA 19%).
    O imposto ativo é o marcado como padrão.
    """
    tax_id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(default="IVA")
    tax_rate: Decimal = Field(max_digits=5, decimal_places=2, ge=0, le=100)
    is_default: bool = False


class Quotation(SQLModel, table=True):
    """
    Orçamento de um veículo.
    Guarda o total já calculado e, quando disponível, o snapshot do imposto.
    """
    quotation_id: Optional[int] = Field(default=None, primary_key=True)
    vehicle_id: int = Field(foreign_key="vehicle.vehicle_id")
    description: Optional[str] = None
    quotation_status: QuotationStatus = Field(default=QuotationStatus.PENDING)
    total_price: Decimal = _money()
    subtotal: Optional[Decimal] = _money(default=None)
    tax_amount: Optional[Decimal] = _money(default=None)
    tax_rate: Optional[Decimal] = Field(default=None, max_digits=5, decimal_places=2)
    entry_date: datetime = Field(default_factory=datetime.now)


class WorkOrder(SQLModel, table=True):
    """
    Ordem de Trabalho.
    Os campos de preço são um snapshot do momento da criação e nunca são recalculados.
    """
    work_order_id: Optional[int] = Field(default=None, primary_key=True)
    vehicle_id: int = Field(foreign_key="vehicle.vehicle_id")
    # Um orçamento gera no máximo uma ordem
    quotation_id: Optional[int] = Field(default=None, foreign_key="quotation.quotation_id", unique=True)
    description: str
    order_status: WorkOrderStatus = Field(default=WorkOrderStatus.NOT_STARTED)
    total_amount: Decimal = _money()
    subtotal: Decimal = _money()
    tax_amount: Decimal = _money()
    tax_rate: Decimal = Field(max_digits=5, decimal_places=2, description="Taxa de imposto congelada")
    order_date: date = Field(default_factory=date.today)
    idempotency_key: Optional[str] = Field(default=None, unique=True, description="Evita ordens duplicadas em reenvios")


class WorkProductDetail(SQLModel, table=True):
    """
    Item individual de uma Ordem de Trabalho ou de um Orçamento.
    Registra o preço unitário cobrado no momento (congela o preço).
    """
    __tablename__ = "work_product_detail"

    work_product_detail_id: Optional[int] = Field(default=None, primary_key=True)
    work_order_id: Optional[int] = Field(default=None, foreign_key="workorder.work_order_id")
    quotation_id: Optional[int] = Field(default=None, foreign_key="quotation.quotation_id")
    product_id: int = Field(foreign_key="product.product_id")
    quantity: int = Field(ge=1)
    sale_price: Decimal = _money(description="Preço unitário no momento da criação (com margem)")
    labor_price: Decimal = _money(default=Decimal("0"))
    discount: Decimal = _money(default=Decimal("0"))
    tax_id: int = Field(foreign_key="tax.tax_id")
    applied_tax_rate: Optional[Decimal] = Field(default=None, max_digits=5, decimal_places=2)


# --- Schemas de entrada/saída da API ---

class LineItemIn(SQLModel):
    product_id: int
    quantity: int = Field(ge=1)
    labor_price: Decimal = Field(default=Decimal("0"), ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)


class WorkOrderCompose(SQLModel):
    """Pedido de criação completa de uma OS (com ou sem orçamento)."""
    vehicle_id: int
    description: str
    quotation_id: Optional[int] = None
    lines: list[LineItemIn] = []
    idempotency_key: Optional[str] = None


class WorkOrderCreate(SQLModel):
    vehicle_id: int
    quotation_id: Optional[int] = None
    description: str
    total_amount: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    tax_rate: Decimal
    order_date: Optional[date] = None
    idempotency_key: Optional[str] = None


class WorkProductDetailCreate(SQLModel):
    work_order_id: int
    product_id: int
    quantity: int = Field(ge=1)
    sale_price: Decimal = Field(ge=0)
    labor_price: Decimal = Field(default=Decimal("0"), ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    tax_id: int
    applied_tax_rate: Optional[Decimal] = None
    quotation_id: Optional[int] = None


class StockUpdate(SQLModel):
    quantity: int = Field(ge=0)
    updated_at: Optional[datetime] = None


class StockAdjustment(SQLModel):
    quantity: int = Field(ge=1)


class StatusUpdate(SQLModel):
    order_status: WorkOrderStatus


class WorkOrderRead(SQLModel):
    work_order_id: int
    vehicle_id: int
    quotation_id: Optional[int] = None
    description: str
    order_status: WorkOrderStatus
    total_amount: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    tax_rate: Decimal
    order_date: date
    idempotency_key: Optional[str] = None


class WorkProductDetailRead(SQLModel):
    work_product_detail_id: int
    work_order_id: Optional[int] = None
    quotation_id: Optional[int] = None
    product_id: int
    quantity: int
    sale_price: Decimal
    labor_price: Decimal
    discount: Decimal
    tax_id: int
    applied_tax_rate: Optional[Decimal] = None


class ComposedOrderRead(SQLModel):
    work_order: WorkOrderRead
    details: list[WorkProductDetailRead]
    state: str
    replayed: bool = False
