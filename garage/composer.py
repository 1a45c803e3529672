"""Criação de ordens de trabalho, com ou sem orçamento.

Sequência única para as duas variantes:

1. valida o pedido e resolve veículo (e orçamento);
2. monta os itens e calcula subtotal, imposto e total;
3. confere o estoque contra uma leitura atual;
4. grava a ordem;
5. grava cada item, um por vez;
6. baixa o estoque.

Os passos 4 a 6 rodam dentro de `gateway.atomic()`. Com um gateway transacional a
falha desfaz tudo; sem transação, a ordem, os itens e as baixas já aplicadas são
compensados. Se a compensação não terminar, `PartialCreationError` informa o que
sobrou para conciliação manual.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Optional, Sequence, Union

from garage.errors import DuplicateOrderError, GarageError, PartialCreationError, ValidationError
from garage.gateway import PersistenceGateway
from garage.models import (
    QuotationStatus,
    WorkOrder,
    WorkOrderCompose,
    WorkOrderCreate,
    WorkProductDetail,
    WorkProductDetailCreate,
)
from garage import pricing
from garage.pricing import PricingSummary, to_decimal
from garage.stock import AppliedDecrement, StockReconciliationService
from garage.tax import GatewayTaxRateProvider, TaxRateProvider

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


class ComposerState(str, Enum):
    IDLE = "idle"
    VALIDATED = "validated"
    PRICED = "priced"
    VERIFIED = "verified"
    ORDER_PERSISTED = "order_persisted"
    DETAILS_PERSISTED = "details_persisted"
    COMPLETED = "completed"
    FAILED = "failed"
    COMPENSATED = "compensated"


@dataclass(frozen=True)
class LineItem:
    product_id: int
    quantity: int
    labor_price: Decimal = Decimal(0)
    discount: Decimal = Decimal(0)


@dataclass(frozen=True)
class WithQuotation:
    """OS a partir de um orçamento aprovado: preços copiados sem recálculo."""
    vehicle_id: Optional[int]
    quotation_id: Optional[int]
    description: str
    idempotency_key: Optional[str] = None


@dataclass(frozen=True)
class WithoutQuotation:
    """OS avulsa: itens escolhidos do catálogo, preços calculados agora."""
    vehicle_id: Optional[int]
    description: str
    lines: Sequence[LineItem] = ()
    idempotency_key: Optional[str] = None


OrderRequest = Union[WithQuotation, WithoutQuotation]


@dataclass(frozen=True)
class PlannedLine:
    """Item pronto para gravar, com o preço unitário congelado."""
    product_id: int
    quantity: int
    sale_price: Decimal
    labor_price: Decimal
    discount: Decimal
    tax_id: int
    applied_tax_rate: Optional[Decimal]
    quotation_id: Optional[int] = None
    # Preço exato usado no cálculo; `sale_price` é o valor gravado com 2 casas
    unit_price: Optional[Decimal] = None

    @property
    def total(self) -> Decimal:
        price = self.sale_price if self.unit_price is None else self.unit_price
        return pricing.line_total(self, price)


@dataclass
class OrderPlan:
    lines: list[PlannedLine]
    summary: PricingSummary
    quotation_id: Optional[int] = None
    products: dict = field(default_factory=dict)


@dataclass
class ComposedOrder:
    work_order: WorkOrder
    details: list[WorkProductDetail]
    state: ComposerState
    replayed: bool = False


def build_request(payload: WorkOrderCompose) -> OrderRequest:
    """Converte o corpo da API na variante correspondente."""
    if payload.quotation_id is not None:
        if payload.lines:
            raise ValidationError(
                "Informe o orçamento ou os itens avulsos, não ambos", field="lines"
            )
        return WithQuotation(
            vehicle_id=payload.vehicle_id,
            quotation_id=payload.quotation_id,
            description=payload.description,
            idempotency_key=payload.idempotency_key,
        )
    return WithoutQuotation(
        vehicle_id=payload.vehicle_id,
        description=payload.description,
        lines=[
            LineItem(item.product_id, item.quantity, to_decimal(item.labor_price), to_decimal(item.discount))
            for item in payload.lines
        ],
        idempotency_key=payload.idempotency_key,
    )


def validate_request(request: OrderRequest) -> None:
    if not request.vehicle_id:
        raise ValidationError("Selecione um veículo", field="vehicle_id")
    if not request.description or not request.description.strip():
        raise ValidationError("A descrição é obrigatória", field="description")
    if isinstance(request, WithQuotation):
        if not request.quotation_id:
            raise ValidationError("Selecione um orçamento", field="quotation_id")
        return
    if not request.lines:
        raise ValidationError("Selecione pelo menos um produto", field="lines")
    for line in request.lines:
        if line.quantity < 1:
            raise ValidationError("A quantidade deve ser pelo menos 1", field="quantity")
        if to_decimal(line.labor_price) < 0:
            raise ValidationError("A mão de obra não pode ser negativa", field="labor_price")
        if to_decimal(line.discount) < 0:
            raise ValidationError("O desconto não pode ser negativo", field="discount")


def quotation_summary(quotation, lines: Sequence[PlannedLine]) -> PricingSummary:
    """Reproduz os valores já calculados do orçamento.

    O total é sempre o do orçamento. Sem snapshot gravado, subtotal e taxa vêm dos
    itens e o imposto é a diferença até o total.
    """
    base = quotation.subtotal
    if base is None:
        base = pricing.subtotal(line.total for line in lines)
    rate = quotation.tax_rate
    if rate is None:
        rates = {line.applied_tax_rate for line in lines if line.applied_tax_rate is not None}
        if len(rates) != 1:
            raise ValidationError(
                f"Orçamento {quotation.quotation_id} sem taxa de imposto definida", field="quotation_id"
            )
        rate = rates.pop()
    total_price = to_decimal(quotation.total_price)
    tax = total_price - to_decimal(base)
    if quotation.tax_amount is not None and to_decimal(quotation.tax_amount) != tax:
        raise ValidationError(
            f"Orçamento {quotation.quotation_id} com totais inconsistentes", field="quotation_id"
        )
    return PricingSummary(
        subtotal=to_decimal(base), tax_rate=to_decimal(rate), tax_amount=tax, total_amount=total_price
    )


class OrderComposer:
    def __init__(
        self,
        gateway: PersistenceGateway,
        tax_provider: Optional[TaxRateProvider] = None,
        stock: Optional[StockReconciliationService] = None,
    ):
        self.gateway = gateway
        self.tax_provider = tax_provider or GatewayTaxRateProvider(gateway)
        self.stock = stock or StockReconciliationService(gateway)
        self.state = ComposerState.IDLE

    def compose(self, request: OrderRequest) -> ComposedOrder:
        self.state = ComposerState.IDLE
        try:
            validate_request(request)
            self.state = ComposerState.VALIDATED

            if request.idempotency_key:
                existing = self.gateway.find_work_order(idempotency_key=request.idempotency_key)
                if existing:
                    return self._replay(request, existing)

            self.gateway.get_vehicle(request.vehicle_id)
            if isinstance(request, WithQuotation):
                plan = self._plan_from_quotation(request)
            else:
                plan = self._plan_ad_hoc(request)
            self.state = ComposerState.PRICED

            # Leitura atual do estoque, nunca a carregada junto com o catálogo
            self.stock.verify_availability(plan.lines, self.gateway.list_stock(), plan.products)
            self.state = ComposerState.VERIFIED

            try:
                return self._persist(request, plan)
            except DuplicateOrderError:
                # Outro envio com a mesma chave gravou a ordem depois da consulta acima
                existing = self.gateway.find_work_order(idempotency_key=request.idempotency_key)
                if existing is None:
                    raise
                return self._replay(request, existing)
        except GarageError as exc:
            if self.state != ComposerState.COMPENSATED:
                self.state = ComposerState.FAILED
            logger.error("Falha ao criar a ordem de trabalho (%s): %s", self.state.value, exc)
            raise

    def _replay(self, request: OrderRequest, existing: WorkOrder) -> ComposedOrder:
        logger.info("Pedido repetido (%s): devolvendo OS %s", request.idempotency_key, existing.work_order_id)
        details = self.gateway.work_order_details(existing.work_order_id)
        self.state = ComposerState.COMPLETED
        return ComposedOrder(existing, details, self.state, replayed=True)

    def _plan_from_quotation(self, request: WithQuotation) -> OrderPlan:
        quotation = self.gateway.get_quotation(request.quotation_id)
        if quotation.vehicle_id != request.vehicle_id:
            raise ValidationError("O orçamento não pertence ao veículo selecionado", field="quotation_id")
        if QuotationStatus(quotation.quotation_status) != QuotationStatus.APPROVED:
            raise ValidationError("Somente orçamentos aprovados geram ordem de trabalho", field="quotation_id")
        existing = self.gateway.find_work_order(quotation_id=quotation.quotation_id)
        if existing:
            raise ValidationError(
                f"O orçamento já gerou a ordem de trabalho {existing.work_order_id}", field="quotation_id"
            )

        details = self.gateway.quotation_details(quotation.quotation_id)
        if not details:
            raise ValidationError("O orçamento não possui itens", field="quotation_id")

        lines = [
            PlannedLine(
                product_id=d.product_id,
                quantity=d.quantity,
                sale_price=to_decimal(d.sale_price),
                labor_price=to_decimal(d.labor_price),
                discount=to_decimal(d.discount),
                tax_id=d.tax_id,
                applied_tax_rate=d.applied_tax_rate,
                quotation_id=quotation.quotation_id,
            )
            for d in details
        ]
        return OrderPlan(lines, quotation_summary(quotation, lines), quotation.quotation_id)

    def _plan_ad_hoc(self, request: WithoutQuotation) -> OrderPlan:
        products = self.gateway.get_products(line.product_id for line in request.lines)
        tax = self.tax_provider.active_tax_rate()

        lines = []
        for line in request.lines:
            product = products[line.product_id]
            price = pricing.unit_price(product)
            planned = PlannedLine(
                product_id=line.product_id,
                quantity=line.quantity,
                # Preço unitário gravado com 2 casas, como a coluna do banco
                sale_price=price.quantize(CENTS, rounding=ROUND_HALF_UP),
                labor_price=to_decimal(line.labor_price),
                discount=to_decimal(line.discount),
                tax_id=tax.tax_id,
                applied_tax_rate=tax.rate,
                unit_price=price,
            )
            if planned.total < 0:
                raise ValidationError(
                    f"O desconto do produto {product.product_name} é maior que o valor do item",
                    field="discount",
                )
            lines.append(planned)

        # Itens somados com o preço exato; o subtotal vai para uma coluna de 2 casas
        base = pricing.subtotal(line.total for line in lines).quantize(CENTS, rounding=ROUND_HALF_UP)
        summary = pricing.summarize([base], tax.rate)
        return OrderPlan(lines, summary, products=products)

    def _persist(self, request: OrderRequest, plan: OrderPlan) -> ComposedOrder:
        order: Optional[WorkOrder] = None
        details: list[WorkProductDetail] = []
        applied: list[AppliedDecrement] = []
        summary = plan.summary
        try:
            with self.gateway.atomic():
                order = self.gateway.create_work_order(WorkOrderCreate(
                    vehicle_id=request.vehicle_id,
                    quotation_id=plan.quotation_id,
                    description=request.description.strip(),
                    total_amount=summary.total_amount,
                    subtotal=summary.subtotal,
                    tax_amount=summary.tax_amount,
                    tax_rate=summary.tax_rate,
                    idempotency_key=request.idempotency_key,
                ))
                self.state = ComposerState.ORDER_PERSISTED
                logger.info("OS %s criada (total %s)", order.work_order_id, summary.total_amount)

                # Um item por vez, na ordem do pedido
                for line in plan.lines:
                    details.append(self.gateway.create_work_product_detail(WorkProductDetailCreate(
                        work_order_id=order.work_order_id,
                        product_id=line.product_id,
                        quantity=line.quantity,
                        sale_price=line.sale_price,
                        labor_price=line.labor_price,
                        discount=line.discount,
                        tax_id=line.tax_id,
                        applied_tax_rate=line.applied_tax_rate,
                        quotation_id=line.quotation_id,
                    )))
                self.state = ComposerState.DETAILS_PERSISTED

                self.stock.decrement(plan.lines, applied)
        except GarageError as exc:
            if order is None:
                raise
            if self.gateway.transactional:
                self.state = ComposerState.COMPENSATED
                raise
            leftovers = self._compensate(order, details, applied)
            if leftovers:
                raise PartialCreationError(order.work_order_id, exc, leftovers) from exc
            self.state = ComposerState.COMPENSATED
            raise

        self.state = ComposerState.COMPLETED
        return ComposedOrder(order, details, self.state)

    def _compensate(
        self, order: WorkOrder, details: list[WorkProductDetail], applied: list[AppliedDecrement]
    ) -> list[str]:
        """Desfaz o que foi gravado. Retorna o que não pôde ser desfeito."""
        logger.warning("Compensando OS %s", order.work_order_id)
        leftovers = [
            f"estoque do produto {item.product_id} (+{item.quantity})"
            for item in self.stock.restore(reversed(applied))
        ]

        removed_details = True
        for detail in reversed(details):
            try:
                self.gateway.delete_work_product_detail(detail.work_product_detail_id)
            except GarageError as e:
                logger.error("Falha ao remover item %s: %s", detail.work_product_detail_id, e)
                leftovers.append(f"item {detail.work_product_detail_id}")
                removed_details = False

        if removed_details:
            try:
                self.gateway.delete_work_order(order.work_order_id)
            except GarageError as e:
                logger.error("Falha ao remover OS %s: %s", order.work_order_id, e)
                leftovers.append(f"ordem de trabalho {order.work_order_id}")
        else:
            leftovers.append(f"ordem de trabalho {order.work_order_id}")
        return leftovers
