from __future__ import annotations


class CommerceError(RuntimeError):
    pass


class ValidationError(CommerceError):
    pass


class NotFoundError(CommerceError):
    pass


class RateLimitError(CommerceError):
    def __init__(self, message: str, wait_seconds: int = 0) -> None:
        super().__init__(message)
        self.wait_seconds = int(wait_seconds)


class UnauthorizedError(CommerceError):
    pass


class GatewayError(CommerceError):
    pass


class FulfillmentConflict(CommerceError):
    """Raised when another path already claimed the terminal outcome of an order."""

    def __init__(self, order_id: str, outcome: str) -> None:
        super().__init__(f"order already finalized: order_id={order_id} outcome={outcome}")
        self.order_id = order_id
        self.outcome = outcome


class SessionConflictError(CommerceError):
    pass


class StoreError(CommerceError):
    pass


class OutOfStockError(ValidationError):
    def __init__(self, product_id: str, product_name: str | None = None) -> None:
        super().__init__(f"out of stock: {product_id}")
        self.product_id = product_id
        self.product_name = product_name or product_id
