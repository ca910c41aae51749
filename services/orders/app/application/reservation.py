"""
Order reservation: validate, lock, decrement inventory and create the order
in a single transaction.

Product rows are always locked in ascending id order. Two reservations that
share products therefore request the shared locks in the same relative order
and cannot deadlock each other. Each requested quantity is then applied with
a guarded ``inventory >= quantity`` update, so ``products.inventory`` can never
go negative even if the lock scope is wrong.
"""

from typing import Any, Iterable, List, Sequence, Tuple
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from shared.core import get_logger, set_request_context
from app.domain.models import Order, OrderItem, OrderStatus, Product
from app.domain.errors import (
    InsufficientInventory,
    InternalError,
    MalformedRequest,
    ProductNotFound,
    ReservationError,
)
from .schemas import OrderCreated

logger = get_logger(__name__)

RequestedItem = Tuple[int, int]


def is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _field(item: Any, name: str) -> Any:
    if isinstance(item, dict):
        return item.get(name)
    return getattr(item, name, None)


def validate_request(user_id: Any, items: Any) -> List[RequestedItem]:
    """
    Check the request shape and return ``(product_id, quantity)`` pairs in
    input order. Raises ``MalformedRequest``; never touches the store.
    """
    if not is_positive_int(user_id) or not isinstance(items, (list, tuple)) or not items:
        raise MalformedRequest("user_id must be a positive integer and items non-empty")

    requested = []
    for item in items:
        product_id = _field(item, "product_id")
        quantity = _field(item, "quantity")
        if not is_positive_int(product_id) or not is_positive_int(quantity):
            raise MalformedRequest(
                "product_id and quantity must be positive integers", code="invalid_items"
            )
        requested.append((product_id, quantity))
    return requested


def lock_order(requested: Iterable[RequestedItem]) -> List[int]:
    """Distinct product ids, ascending: the only order product rows are locked in."""
    return sorted({product_id for product_id, _ in requested})


class ReservationService:
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def reserve(self, user_id: Any, items: Sequence[Any]) -> OrderCreated:
        """
        Create one PENDING order and decrement inventory for every item, or
        change nothing at all.

        Raises:
            MalformedRequest: bad input, no transaction opened
            ProductNotFound: a referenced product does not exist
            InsufficientInventory: a product cannot cover the requested total
            InternalError: the store failed; the transaction was rolled back
        """
        requested = validate_request(user_id, items)
        product_ids = lock_order(requested)
        set_request_context(user_id=str(user_id))

        try:
            with self.session_factory() as session, session.begin():
                order_id = self._reserve(session, user_id, requested, product_ids)
        except ReservationError:
            raise
        except SQLAlchemyError as e:
            logger.error(
                "order_create_failed",
                exc_info=True,
                extra={'extra_fields': {'user_id': user_id, 'err': str(e)}}
            )
            raise InternalError(str(e)) from e

        logger.info(
            "order_created",
            extra={'extra_fields': {'order_id': order_id, 'user_id': user_id, 'item_count': len(requested)}}
        )
        return OrderCreated(order_id=order_id, status=OrderStatus.PENDING.value)

    def _reserve(
        self,
        session: Session,
        user_id: int,
        requested: List[RequestedItem],
        product_ids: List[int],
    ) -> int:
        locked = session.execute(
            select(Product.id, Product.inventory)
            .where(Product.id.in_(product_ids))
            .order_by(Product.id)
            .with_for_update()
        ).all()
        remaining = {row.id: row.inventory for row in locked}

        for product_id in product_ids:
            if product_id not in remaining:
                logger.warning(
                    "order_rejected_missing_product",
                    extra={'extra_fields': {'user_id': user_id, 'product_id': product_id}}
                )
                raise ProductNotFound(product_id)

        # Running total, so repeated lines for one product are checked together
        for product_id, quantity in requested:
            current = remaining[product_id]
            if current < quantity:
                logger.info(
                    "insufficient_inventory",
                    extra={'extra_fields': {
                        'user_id': user_id,
                        'product_id': product_id,
                        'quantity': quantity,
                        'inventory': current,
                    }}
                )
                raise InsufficientInventory(product_id)
            remaining[product_id] = current - quantity

        order = Order(user_id=user_id, status=OrderStatus.PENDING.value)
        session.add(order)
        session.flush()  # assign id

        for product_id, quantity in requested:
            result = session.execute(
                update(Product)
                .where(Product.id == product_id, Product.inventory >= quantity)
                .values(inventory=Product.inventory - quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.info(
                    "insufficient_inventory_race",
                    extra={'extra_fields': {
                        'user_id': user_id,
                        'order_id': order.id,
                        'product_id': product_id,
                        'quantity': quantity,
                    }}
                )
                raise InsufficientInventory(product_id, race=True)

            session.add(OrderItem(order_id=order.id, product_id=product_id, quantity=quantity))
            logger.info(
                "order_item_created",
                extra={'extra_fields': {
                    'order_id': order.id,
                    'user_id': user_id,
                    'product_id': product_id,
                    'quantity': quantity,
                }}
            )

        return order.id
