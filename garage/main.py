import logging
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Depends, Request
from fastapi.responses import JSONResponse, Response
from sqlmodel import Session, select

from garage.composer import OrderComposer, build_request
from garage.config import configure_logging
from garage.database import create_db_and_tables, get_session
from garage.errors import (
    DuplicateOrderError,
    GarageError,
    InsufficientStockError,
    InvalidStatusTransitionError,
    NetworkError,
    NotFoundError,
    PartialCreationError,
    StockUpdateError,
    TaxNotConfiguredError,
    ValidationError,
)
from garage.models import (
    ComposedOrderRead,
    Product,
    Quotation,
    StatusUpdate,
    StockAdjustment,
    StockProduct,
    StockUpdate,
    Tax,
    Vehicle,
    WorkOrder,
    WorkOrderCompose,
    WorkOrderCreate,
    WorkOrderRead,
    WorkProductDetail,
    WorkProductDetailCreate,
    WorkProductDetailRead,
    advance_status,
)
from garage.repository import SqlGateway

logger = logging.getLogger(__name__)

app = FastAPI(title="Oficina - Ordens de Trabalho")

ERROR_STATUS_CODES = {
    ValidationError: 400,
    InvalidStatusTransitionError: 400,
    NotFoundError: 404,
    TaxNotConfiguredError: 404,
    InsufficientStockError: 409,
    StockUpdateError: 409,
    DuplicateOrderError: 409,
    NetworkError: 502,
    PartialCreationError: 500,
}


@app.on_event("startup")
def on_startup():
    configure_logging()
    create_db_and_tables()


@app.exception_handler(GarageError)
async def garage_error_handler(request: Request, exc: GarageError) -> JSONResponse:
    status_code = ERROR_STATUS_CODES.get(type(exc), 500)
    return JSONResponse(
        status_code=status_code,
        content={"message": str(exc), "error_type": type(exc).__name__},
    )


# --- Rotas de Veículos e Catálogo ---
@app.get("/vehicles", response_model=list[Vehicle])
def list_vehicles(session: Session = Depends(get_session)):
    return session.exec(select(Vehicle)).all()

@app.get("/vehicles/{vehicle_id}", response_model=Vehicle)
def get_vehicle(vehicle_id: int, session: Session = Depends(get_session)):
    return SqlGateway(session).get_vehicle(vehicle_id)

@app.get("/products", response_model=list[Product])
def list_products(session: Session = Depends(get_session)):
    return session.exec(select(Product)).all()


# --- Rotas de Estoque ---
@app.get("/stockProducts", response_model=list[StockProduct])
def list_stock(session: Session = Depends(get_session)):
    return SqlGateway(session).list_stock()

@app.put("/stockProducts/{stock_product_id}", response_model=StockProduct)
def update_stock(stock_product_id: int, data: StockUpdate, session: Session = Depends(get_session)):
    """Ajuste manual (valor absoluto), usado por entrada de compras e correções."""
    stock = session.get(StockProduct, stock_product_id)
    if not stock:
        raise NotFoundError("Estoque", stock_product_id)
    stock.quantity = data.quantity
    stock.updated_at = data.updated_at or datetime.now()
    session.add(stock)
    session.commit()
    session.refresh(stock)
    return stock

@app.post("/stockProducts/product/{product_id}/decrement", response_model=StockProduct)
def decrement_stock(product_id: int, data: StockAdjustment, session: Session = Depends(get_session)):
    """Baixa condicional: recusa (409) se não houver quantidade suficiente."""
    stock = session.exec(select(StockProduct).where(StockProduct.product_id == product_id)).first()
    if not stock:
        raise NotFoundError("Estoque do produto", product_id)
    gateway = SqlGateway(session)
    with gateway.atomic():
        if not gateway.decrement_stock(product_id, data.quantity):
            raise StockUpdateError(product_id, data.quantity, f"disponível {stock.quantity}")
    session.refresh(stock)
    return stock

@app.post("/stockProducts/product/{product_id}/restore", response_model=StockProduct)
def restore_stock(product_id: int, data: StockAdjustment, session: Session = Depends(get_session)):
    gateway = SqlGateway(session)
    with gateway.atomic():
        gateway.restore_stock(product_id, data.quantity)
    return session.exec(select(StockProduct).where(StockProduct.product_id == product_id)).one()


# --- Rotas de Orçamentos e Impostos ---
@app.get("/quotations", response_model=list[Quotation])
def list_quotations(vehicle_id: Optional[int] = None, session: Session = Depends(get_session)):
    query = select(Quotation)
    if vehicle_id is not None:
        query = query.where(Quotation.vehicle_id == vehicle_id)
    # Mais recentes primeiro
    return session.exec(query.order_by(Quotation.entry_date.desc())).all()

@app.get("/quotations/{quotation_id}", response_model=Quotation)
def get_quotation(quotation_id: int, session: Session = Depends(get_session)):
    return SqlGateway(session).get_quotation(quotation_id)

@app.get("/quotations/{quotation_id}/details", response_model=list[WorkProductDetail])
def get_quotation_details(quotation_id: int, session: Session = Depends(get_session)):
    gateway = SqlGateway(session)
    gateway.get_quotation(quotation_id)
    return gateway.quotation_details(quotation_id)

@app.get("/tax/active", response_model=Tax)
def get_active_tax(session: Session = Depends(get_session)):
    return SqlGateway(session).get_active_tax()


# --- Rotas de Ordens de Trabalho ---
@app.get("/workOrders", response_model=list[WorkOrder])
def list_work_orders(
    quotation_id: Optional[int] = None,
    idempotency_key: Optional[str] = None,
    session: Session = Depends(get_session),
):
    query = select(WorkOrder)
    if quotation_id is not None:
        query = query.where(WorkOrder.quotation_id == quotation_id)
    if idempotency_key is not None:
        query = query.where(WorkOrder.idempotency_key == idempotency_key)
    return session.exec(query.order_by(WorkOrder.work_order_id)).all()

@app.get("/workOrders/{work_order_id}", response_model=WorkOrder)
def get_work_order(work_order_id: int, session: Session = Depends(get_session)):
    order = session.get(WorkOrder, work_order_id)
    if not order:
        raise NotFoundError("Ordem de trabalho", work_order_id)
    return order

@app.get("/workOrders/{work_order_id}/details", response_model=list[WorkProductDetail])
def get_work_order_details(work_order_id: int, session: Session = Depends(get_session)):
    gateway = SqlGateway(session)
    get_work_order(work_order_id, session)
    return gateway.work_order_details(work_order_id)

@app.post("/workOrders", response_model=WorkOrder, status_code=201)
def create_work_order(data: WorkOrderCreate, session: Session = Depends(get_session)):
    """Gravação direta de uma OS já precificada (passo 4 do fluxo via REST)."""
    if data.total_amount != data.subtotal + data.tax_amount:
        raise ValidationError("O total deve ser igual a subtotal + imposto", field="total_amount")
    gateway = SqlGateway(session)
    gateway.get_vehicle(data.vehicle_id)
    if data.quotation_id is not None:
        gateway.get_quotation(data.quotation_id)
    with gateway.atomic():
        order = gateway.create_work_order(data)
    session.refresh(order)
    return order

@app.post("/workOrders/compose", response_model=ComposedOrderRead, status_code=201)
def compose_work_order(data: WorkOrderCompose, session: Session = Depends(get_session)):
    """Fluxo completo: preço, imposto, estoque, OS, itens e baixa em uma transação."""
    result = OrderComposer(SqlGateway(session)).compose(build_request(data))
    return ComposedOrderRead(
        work_order=WorkOrderRead.model_validate(result.work_order),
        details=[WorkProductDetailRead.model_validate(d) for d in result.details],
        state=result.state.value,
        replayed=result.replayed,
    )

@app.patch("/workOrders/{work_order_id}/status", response_model=WorkOrder)
def update_work_order_status(work_order_id: int, data: StatusUpdate, session: Session = Depends(get_session)):
    order = get_work_order(work_order_id, session)
    order.order_status = advance_status(order.order_status, data.order_status)
    session.add(order)
    session.commit()
    session.refresh(order)
    return order

@app.delete("/workOrders/{work_order_id}")
def delete_work_order(work_order_id: int, session: Session = Depends(get_session)):
    gateway = SqlGateway(session)
    with gateway.atomic():
        gateway.delete_work_order(work_order_id)
    return Response(status_code=200)


# --- Rotas de Itens da OS ---
@app.post("/workProductDetails", response_model=WorkProductDetail, status_code=201)
def create_work_product_detail(data: WorkProductDetailCreate, session: Session = Depends(get_session)):
    gateway = SqlGateway(session)
    get_work_order(data.work_order_id, session)
    gateway.get_products([data.product_id])
    with gateway.atomic():
        detail = gateway.create_work_product_detail(data)
    session.refresh(detail)
    return detail

@app.delete("/workProductDetails/{detail_id}")
def delete_work_product_detail(detail_id: int, session: Session = Depends(get_session)):
    gateway = SqlGateway(session)
    with gateway.atomic():
        gateway.delete_work_product_detail(detail_id)
    return Response(status_code=200)
