"""Gateway de persistência sobre o banco local (SQLModel).

Todo o fluxo de criação roda em uma única transação: `atomic()` confirma no fim
ou desfaz tudo se qualquer passo falhar.
"""

import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterable, Iterator, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from garage.errors import DuplicateOrderError, NotFoundError, ValidationError
from garage.models import (
    Product,
    Quotation,
    StockProduct,
    Tax,
    Vehicle,
    WorkOrder,
    WorkOrderCreate,
    WorkProductDetail,
    WorkProductDetailCreate,
    WorkOrderStatus,
)
from garage.tax import select_active_tax

logger = logging.getLogger(__name__)


class SqlGateway:
    transactional = True

    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def atomic(self) -> Iterator[None]:
        try:
            yield
        except Exception:
            self.session.rollback()
            logger.info("Transação desfeita")
            raise
        self.session.commit()

    def _get(self, model, entity_id, label: str):
        obj = self.session.get(model, entity_id)
        if not obj:
            raise NotFoundError(label, entity_id)
        return obj

    def get_vehicle(self, vehicle_id: int) -> Vehicle:
        return self._get(Vehicle, vehicle_id, "Veículo")

    def get_products(self, product_ids: Iterable[int]) -> dict[int, Product]:
        ids = set(product_ids)
        products = self.session.exec(select(Product).where(Product.product_id.in_(ids))).all()
        found = {p.product_id: p for p in products}
        missing = sorted(ids - found.keys())
        if missing:
            raise NotFoundError("Produto", missing[0])
        return found

    def list_stock(self) -> list[StockProduct]:
        # populate_existing garante leitura atual mesmo com objetos em cache na sessão
        query = select(StockProduct).execution_options(populate_existing=True)
        return list(self.session.exec(query).all())

    def get_quotation(self, quotation_id: int) -> Quotation:
        return self._get(Quotation, quotation_id, "Orçamento")

    def quotation_details(self, quotation_id: int) -> list[WorkProductDetail]:
        query = select(WorkProductDetail).where(
            WorkProductDetail.quotation_id == quotation_id,
            WorkProductDetail.work_order_id == None,  # noqa: E711
        ).order_by(WorkProductDetail.work_product_detail_id)
        return list(self.session.exec(query).all())

    def get_active_tax(self) -> Tax:
        return select_active_tax(self.session.exec(select(Tax).order_by(Tax.tax_id)).all())

    def find_work_order(
        self, quotation_id: Optional[int] = None, idempotency_key: Optional[str] = None
    ) -> Optional[WorkOrder]:
        return self._find_work_order(quotation_id, idempotency_key)

    def _find_work_order(self, quotation_id=None, idempotency_key=None) -> Optional[WorkOrder]:
        query = select(WorkOrder)
        if quotation_id is not None:
            query = query.where(WorkOrder.quotation_id == quotation_id)
        if idempotency_key is not None:
            query = query.where(WorkOrder.idempotency_key == idempotency_key)
        return self.session.exec(query).first()

    def work_order_details(self, work_order_id: int) -> list[WorkProductDetail]:
        query = select(WorkProductDetail).where(
            WorkProductDetail.work_order_id == work_order_id
        ).order_by(WorkProductDetail.work_product_detail_id)
        return list(self.session.exec(query).all())

    def create_work_order(self, data: WorkOrderCreate) -> WorkOrder:
        values = data.model_dump(exclude={"order_date"})
        order = WorkOrder(
            **values,
            order_status=WorkOrderStatus.NOT_STARTED,
            order_date=data.order_date or date.today(),
        )
        self.session.add(order)
        try:
            self.session.flush()
        except IntegrityError as e:
            # Outro pedido gravou a mesma chave ou o mesmo orçamento depois da consulta
            self.session.rollback()
            self._raise_conflict(data, e)
        self.session.refresh(order)
        return order

    def _raise_conflict(self, data: WorkOrderCreate, error: IntegrityError) -> None:
        if data.idempotency_key and self._find_work_order(idempotency_key=data.idempotency_key):
            raise DuplicateOrderError(data.idempotency_key) from error
        if data.quotation_id is not None:
            existing = self._find_work_order(quotation_id=data.quotation_id)
            if existing:
                raise ValidationError(
                    f"O orçamento já gerou a ordem de trabalho {existing.work_order_id}",
                    field="quotation_id",
                ) from error
        logger.error("Falha ao gravar ordem de trabalho: %s", error.orig)
        raise ValidationError("A ordem de trabalho viola uma restrição do banco de dados") from error

    def create_work_product_detail(self, data: WorkProductDetailCreate) -> WorkProductDetail:
        detail = WorkProductDetail(**data.model_dump())
        self.session.add(detail)
        self.session.flush()
        self.session.refresh(detail)
        return detail

    def _adjust_stock(self, product_id: int, delta: int) -> int:
        stmt = update(StockProduct).where(StockProduct.product_id == product_id)
        if delta < 0:
            # Baixa só acontece se ainda houver quantidade suficiente
            stmt = stmt.where(StockProduct.quantity >= -delta)
        stmt = stmt.values(quantity=StockProduct.quantity + delta, updated_at=datetime.now())
        self.session.flush()
        result = self.session.connection().execute(stmt)
        for obj in list(self.session.identity_map.values()):
            if isinstance(obj, StockProduct) and obj.product_id == product_id:
                self.session.expire(obj)
        return result.rowcount

    def decrement_stock(self, product_id: int, quantity: int) -> bool:
        return self._adjust_stock(product_id, -quantity) == 1

    def restore_stock(self, product_id: int, quantity: int) -> None:
        if self._adjust_stock(product_id, quantity) != 1:
            raise NotFoundError("Estoque do produto", product_id)

    def delete_work_product_detail(self, detail_id: int) -> None:
        self.session.delete(self._get(WorkProductDetail, detail_id, "Detalhe de produto"))
        self.session.flush()

    def delete_work_order(self, work_order_id: int) -> None:
        order = self._get(WorkOrder, work_order_id, "Ordem de trabalho")
        for detail in self.work_order_details(work_order_id):
            self.session.delete(detail)
        self.session.delete(order)
        self.session.flush()
