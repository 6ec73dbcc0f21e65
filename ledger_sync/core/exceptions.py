"""
Errores de dominio del motor de conciliación.

La capa HTTP los traduce a respuestas JSON (ver ledger_sync.main); los
servicios nunca lanzan HTTPException directamente.
"""


class LedgerError(Exception):
    """Base exception for all ledger failures."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class LedgerValidationError(LedgerError):
    """Raised when input is rejected before any persisted side effect."""


class NotFound(LedgerError):
    """Raised when a referenced record does not exist."""

    status_code = 404


class IllegalTransition(LedgerError):
    """Raised when a status transition is not allowed from the current state."""

    status_code = 409

    def __init__(self, entity: str, entity_id: str, current, target):
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.target = target
        current_value = getattr(current, "value", current)
        target_value = getattr(target, "value", target)
        super().__init__(
            f"{entity} {entity_id}: transición inválida de '{current_value}' a '{target_value}'"
        )


class NumberRangeExhausted(LedgerError):
    """Raised when a counter has consumed its configured range."""

    status_code = 409

    def __init__(self, kind, end: int):
        self.kind = kind
        self.end = end
        kind_value = getattr(kind, "value", kind)
        super().__init__(
            f"Se alcanzó el límite de numeración para '{kind_value}' ({end}). "
            f"Actualice el rango en la configuración."
        )


class NumberRangeNotConfigured(LedgerError):
    """Raised when a counter is missing and unmanaged numbering is disabled."""

    status_code = 409

    def __init__(self, kind):
        self.kind = kind
        kind_value = getattr(kind, "value", kind)
        super().__init__(f"No hay rango de numeración configurado para '{kind_value}'")


class InsufficientBalance(LedgerValidationError):
    """Raised when an allocation exceeds what is still owed on an invoice."""

    def __init__(self, invoice_label: str, remaining, amount):
        self.invoice_label = invoice_label
        self.remaining = remaining
        self.amount = amount
        super().__init__(
            f"El valor {amount:.2f} excede el saldo disponible ({remaining:.2f}) "
            f"para la factura {invoice_label}"
        )


class CollectionInProgress(LedgerValidationError):
    """Raised when an invoice already has a collection being processed."""

    def __init__(self, invoice_label: str):
        self.invoice_label = invoice_label
        super().__init__(f"Ya existe un cobro en proceso para la factura {invoice_label}")


class GatewayNotConfigured(LedgerError):
    """Raised when no remote gateway factory is configured."""

    status_code = 503

    def __init__(self, message: str = "No hay conexión con el ERP configurada (GATEWAY_FACTORY)"):
        super().__init__(message)
