"""Reservation failures, each carrying the error code the API reports."""

from typing import Any, Dict, Optional


class ReservationError(Exception):
    kind = "internal_error"
    code = "internal_error"
    status_code = 500

    def __init__(self, message: str = "", product_id: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message or self.kind)
        self.product_id = product_id
        if code is not None:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"error": self.code}
        if self.product_id is not None:
            body["product_id"] = self.product_id
        return body


class MalformedRequest(ReservationError):
    """Rejected before any transaction is opened."""
    kind = "malformed_request"
    code = "invalid_request"
    status_code = 400


class ProductNotFound(ReservationError):
    kind = "product_not_found"
    code = "product_not_found"
    status_code = 409

    def __init__(self, product_id: int):
        super().__init__(f"product {product_id} not found", product_id=product_id)


class InsufficientInventory(ReservationError):
    kind = "insufficient_inventory"
    code = "insufficient_inventory"
    status_code = 409

    def __init__(self, product_id: int, race: bool = False):
        super().__init__(f"insufficient inventory for product {product_id}", product_id=product_id)
        # True when the guarded write caught it rather than the locked snapshot check
        self.race = race


class InternalError(ReservationError):
    """Store or transport failure; the transaction has been rolled back."""


class ClaimLost(Exception):
    """The claimed order was no longer PENDING when the worker tried to confirm it."""

    def __init__(self, order_id: int):
        super().__init__(f"order {order_id} is no longer PENDING")
        self.order_id = order_id
