"""Domain exception hierarchy."""


class VideoShopError(RuntimeError):
    """Base class for application errors."""
    pass


class ValidationError(VideoShopError):
    """Raised when client input is rejected. Nothing is mutated."""
    pass


class NotFoundError(VideoShopError):
    """Raised when a referenced record does not exist."""
    pass


class SupplierError(VideoShopError):
    """Raised when a supplier integration cannot complete a request."""

    def __init__(self, message: str, supplier: str | None = None, response: dict | None = None):
        super().__init__(message)
        self.supplier = supplier
        self.response = response


class SupplierAuthError(SupplierError):
    """Raised when the supplier credentials exchange fails."""
    pass


class UnknownSupplierError(SupplierError):
    """Raised when an item references a supplier platform with no integration."""
    pass


class InvalidTransitionError(VideoShopError):
    """Raised on an illegal fulfillment status move."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Illegal fulfillment transition {current} -> {target}")
        self.current = current
        self.target = target


class PipelineAbort(VideoShopError):
    """Raised when a required pipeline stage produces nothing."""

    def __init__(self, stage: str, message: str):
        super().__init__(message)
        self.stage = stage


class PaymentError(VideoShopError):
    """Raised when the payment gateway rejects a request."""
    pass


class WebhookSignatureError(PaymentError):
    """Raised when a gateway webhook fails signature verification."""
    pass
