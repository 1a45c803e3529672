"""Exceções do fluxo de criação de ordens de trabalho."""

from typing import Optional


class GarageError(Exception):
    """Base para todos os erros da oficina."""

    pass


class ValidationError(GarageError):
    """Dados inválidos, rejeitados antes de qualquer chamada de rede ou banco."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.field = field
        super().__init__(message)


class NotFoundError(GarageError):
    """Registro referenciado não existe."""

    def __init__(self, entity: str, entity_id):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} não encontrado: {entity_id}")


class TaxNotConfiguredError(GarageError):
    """Nenhum imposto cadastrado no sistema."""

    def __init__(self):
        super().__init__("Não há impostos configurados no sistema")


class InsufficientStockError(GarageError):
    """Estoque disponível menor que o solicitado (ou produto sem estoque)."""

    def __init__(self, product_id: int, available: int, requested: int, product_name: Optional[str] = None):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        self.product_name = product_name
        label = product_name or f"produto {product_id}"
        super().__init__(
            f"Estoque insuficiente para {label}: disponível {available}, solicitado {requested}"
        )


class StockUpdateError(GarageError):
    """A baixa condicional de estoque não pôde ser aplicada."""

    def __init__(self, product_id: int, requested: int, reason: Optional[str] = None):
        self.product_id = product_id
        self.requested = requested
        msg = f"Falha ao baixar {requested} unidade(s) do produto {product_id}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class DuplicateOrderError(GarageError):
    """Já existe uma ordem de trabalho gravada com a mesma chave de idempotência."""

    def __init__(self, idempotency_key: str):
        self.idempotency_key = idempotency_key
        super().__init__(f"Ordem de trabalho já criada para o pedido {idempotency_key}")


class InvalidStatusTransitionError(GarageError):
    """Transição de status fora da sequência linear."""

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Transição de status inválida: {current} -> {requested}")


class NetworkError(GarageError):
    """Falha HTTP ao falar com o backend."""

    GENERIC_MESSAGE = "Erro de comunicação com o servidor"

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message or self.GENERIC_MESSAGE)


class PartialCreationError(GarageError):
    """A ordem foi gravada, um passo seguinte falhou e a compensação não ficou completa.

    `leftovers` descreve o que ainda precisa de conciliação manual.
    """

    def __init__(self, work_order_id: int, cause: Exception, leftovers: Optional[list[str]] = None):
        self.work_order_id = work_order_id
        self.cause = cause
        self.leftovers = leftovers or []
        msg = f"Ordem de trabalho {work_order_id} criada parcialmente: {cause}"
        if self.leftovers:
            msg = f"{msg}. Pendências: {'; '.join(self.leftovers)}"
        super().__init__(msg)


