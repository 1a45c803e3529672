"""Gateway de persistência sobre a API REST da oficina.

Não há transação entre chamadas: `atomic()` não desfaz nada e o compositor de
ordens executa as compensações quando um passo falha.
"""

import logging
from contextlib import contextmanager
from typing import Any, Iterable, Iterator, Optional

import requests

from garage.config import get_settings
from garage.errors import DuplicateOrderError, NetworkError, NotFoundError
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

logger = logging.getLogger(__name__)


class RestGateway:
    transactional = False

    def __init__(self, base_url: Optional[str] = None, session=None, timeout: Optional[float] = None):
        settings = get_settings()
        self.base_url = (base_url or settings.api_url).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout or settings.http_timeout

    @contextmanager
    def atomic(self) -> Iterator[None]:
        yield

    def _request(self, method: str, path: str, not_found: Optional[tuple] = None, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        logger.debug("Requisição: %s %s", method, url)
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.error("Erro de rede em %s %s: %s", method, url, e)
            raise NetworkError(f"{NetworkError.GENERIC_MESSAGE}: {e}") from e

        if response.status_code == 404 and not_found:
            raise NotFoundError(*not_found)
        if response.status_code >= 400:
            logger.error("Resposta %s em %s %s: %s", response.status_code, method, url, response.text)
            raise NetworkError(_server_message(response), response.status_code)
        if not response.content:
            return None
        return response.json()

    def get_vehicle(self, vehicle_id: int) -> Vehicle:
        data = self._request("GET", f"/vehicles/{vehicle_id}", not_found=("Veículo", vehicle_id))
        return Vehicle.model_validate(data)

    def get_products(self, product_ids: Iterable[int]) -> dict[int, Product]:
        ids = set(product_ids)
        products = [Product.model_validate(p) for p in self._request("GET", "/products")]
        found = {p.product_id: p for p in products if p.product_id in ids}
        missing = sorted(ids - found.keys())
        if missing:
            raise NotFoundError("Produto", missing[0])
        return found

    def list_stock(self) -> list[StockProduct]:
        return [StockProduct.model_validate(s) for s in self._request("GET", "/stockProducts")]

    def get_quotation(self, quotation_id: int) -> Quotation:
        data = self._request("GET", f"/quotations/{quotation_id}", not_found=("Orçamento", quotation_id))
        return Quotation.model_validate(data)

    def quotation_details(self, quotation_id: int) -> list[WorkProductDetail]:
        data = self._request(
            "GET", f"/quotations/{quotation_id}/details", not_found=("Orçamento", quotation_id)
        )
        return [WorkProductDetail.model_validate(d) for d in data]

    def get_active_tax(self) -> Tax:
        return Tax.model_validate(self._request("GET", "/tax/active"))

    def find_work_order(
        self, quotation_id: Optional[int] = None, idempotency_key: Optional[str] = None
    ) -> Optional[WorkOrder]:
        params = {}
        if quotation_id is not None:
            params["quotation_id"] = quotation_id
        if idempotency_key is not None:
            params["idempotency_key"] = idempotency_key
        orders = self._request("GET", "/workOrders", params=params)
        return WorkOrder.model_validate(orders[0]) if orders else None

    def work_order_details(self, work_order_id: int) -> list[WorkProductDetail]:
        data = self._request(
            "GET", f"/workOrders/{work_order_id}/details", not_found=("Ordem de trabalho", work_order_id)
        )
        return [WorkProductDetail.model_validate(d) for d in data]

    def create_work_order(self, data: WorkOrderCreate) -> WorkOrder:
        try:
            created = self._request("POST", "/workOrders", json=data.model_dump(mode="json"))
        except NetworkError as e:
            # 409: a chave de idempotência já foi usada por outro envio
            if e.status_code == 409 and data.idempotency_key:
                raise DuplicateOrderError(data.idempotency_key) from e
            raise
        return WorkOrder.model_validate(created)

    def create_work_product_detail(self, data: WorkProductDetailCreate) -> WorkProductDetail:
        created = self._request("POST", "/workProductDetails", json=data.model_dump(mode="json"))
        return WorkProductDetail.model_validate(created)

    def decrement_stock(self, product_id: int, quantity: int) -> bool:
        try:
            self._request(
                "POST", f"/stockProducts/product/{product_id}/decrement", json={"quantity": quantity}
            )
        except NetworkError as e:
            # 409: o servidor recusou a baixa por falta de estoque
            if e.status_code == 409:
                return False
            raise
        return True

    def restore_stock(self, product_id: int, quantity: int) -> None:
        self._request(
            "POST",
            f"/stockProducts/product/{product_id}/restore",
            json={"quantity": quantity},
            not_found=("Estoque do produto", product_id),
        )

    def delete_work_product_detail(self, detail_id: int) -> None:
        self._request(
            "DELETE", f"/workProductDetails/{detail_id}", not_found=("Detalhe de produto", detail_id)
        )

    def delete_work_order(self, work_order_id: int) -> None:
        self._request(
            "DELETE", f"/workOrders/{work_order_id}", not_found=("Ordem de trabalho", work_order_id)
        )


def _server_message(response) -> Optional[str]:
    """Mensagem enviada pelo servidor, quando existir."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        message = body.get("message") or body.get("detail")
        if isinstance(message, str):
            return message
    return None
