"""Contrato do gateway de persistência usado pelo compositor de ordens.

Há duas implementações: `SqlGateway` (banco local, uma transação por fluxo) e
`RestGateway` (backend HTTP, sem transação; o compositor compensa em caso de falha).
"""

from typing import ContextManager, Iterable, Optional, Protocol, runtime_checkable

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
)


@runtime_checkable
class PersistenceGateway(Protocol):
    # True quando atomic() desfaz tudo sozinho em caso de erro
    transactional: bool

    def atomic(self) -> ContextManager[None]:
        ...

    def get_vehicle(self, vehicle_id: int) -> Vehicle:
        ...

    def get_products(self, product_ids: Iterable[int]) -> dict[int, Product]:
        ...

    def list_stock(self) -> list[StockProduct]:
        ...

    def get_quotation(self, quotation_id: int) -> Quotation:
        ...

    def quotation_details(self, quotation_id: int) -> list[WorkProductDetail]:
        ...

    def get_active_tax(self) -> Tax:
        ...

    def find_work_order(
        self, quotation_id: Optional[int] = None, idempotency_key: Optional[str] = None
    ) -> Optional[WorkOrder]:
        ...

    def work_order_details(self, work_order_id: int) -> list[WorkProductDetail]:
        ...

    def create_work_order(self, data: WorkOrderCreate) -> WorkOrder:
        ...

    def create_work_product_detail(self, data: WorkProductDetailCreate) -> WorkProductDetail:
        ...

    def decrement_stock(self, product_id: int, quantity: int) -> bool:
        """Baixa condicional: só aplica se houver `quantity` disponível. Retorna se aplicou."""
        ...

    def restore_stock(self, product_id: int, quantity: int) -> None:
        ...

    def delete_work_product_detail(self, detail_id: int) -> None:
        ...

    def delete_work_order(self, work_order_id: int) -> None:
        ...
