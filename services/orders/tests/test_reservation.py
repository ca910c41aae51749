import pytest
from sqlalchemy import event, select

from app.application.reservation import ReservationService, lock_order, validate_request
from app.domain.errors import (
    InsufficientInventory,
    InternalError,
    MalformedRequest,
    ProductNotFound,
)
from app.domain.models import OrderItem, OrderStatus
from app.infrastructure.db import create_db_engine, create_session_factory


def _items(*pairs):
    return [{"product_id": p, "quantity": q} for p, q in pairs]


def test_reserve_creates_pending_order_and_decrements(session_factory, make_product, inventory_of, row_counts):
    a = make_product(inventory=5)
    b = make_product(inventory=2)

    result = ReservationService(session_factory).reserve(1, _items((a, 2), (b, 1), (a, 1)))

    assert result.status == OrderStatus.PENDING.value
    assert inventory_of(a) == 2
    assert inventory_of(b) == 1
    assert row_counts() == (1, 3)

    with session_factory() as session:
        items = session.execute(
            select(OrderItem.product_id, OrderItem.quantity).where(OrderItem.order_id == result.order_id)
        ).all()
    per_product = {}
    for product_id, quantity in items:
        per_product[product_id] = per_product.get(product_id, 0) + quantity
    assert per_product == {a: 3, b: 1}


def test_exact_inventory_then_nothing_left(session_factory, make_product, inventory_of):
    a = make_product(inventory=5)
    service = ReservationService(session_factory)

    service.reserve(1, _items((a, 5)))
    assert inventory_of(a) == 0

    with pytest.raises(InsufficientInventory) as exc:
        service.reserve(1, _items((a, 1)))
    assert exc.value.product_id == a
    assert exc.value.race is False
    assert inventory_of(a) == 0


def test_missing_product_changes_nothing(session_factory, make_product, inventory_of, row_counts):
    a = make_product(inventory=5)

    with pytest.raises(ProductNotFound) as exc:
        ReservationService(session_factory).reserve(1, _items((a, 1), (999, 1)))

    assert exc.value.product_id == 999
    assert exc.value.to_dict() == {"error": "product_not_found", "product_id": 999}
    assert inventory_of(a) == 5
    assert row_counts() == (0, 0)


def test_repeated_lines_are_checked_against_running_total(session_factory, make_product, inventory_of, row_counts):
    a = make_product(inventory=5)

    with pytest.raises(InsufficientInventory) as exc:
        ReservationService(session_factory).reserve(1, _items((a, 3), (a, 3)))

    assert exc.value.product_id == a
    assert inventory_of(a) == 5
    assert row_counts() == (0, 0)


def test_insufficient_second_product_leaves_first_untouched(session_factory, make_product, inventory_of, row_counts):
    a = make_product(inventory=5)
    b = make_product(inventory=1)

    with pytest.raises(InsufficientInventory) as exc:
        ReservationService(session_factory).reserve(1, _items((a, 2), (b, 2)))

    assert exc.value.product_id == b
    assert inventory_of(a) == 5
    assert inventory_of(b) == 1
    assert row_counts() == (0, 0)


def test_guarded_write_failure_rolls_back_whole_order(engine, session_factory, make_product, inventory_of, row_counts):
    a = make_product(inventory=5)
    b = make_product(inventory=5)

    # Zero the stock inside the transaction just before the first guarded update
    def drain(conn, cursor, statement, parameters, context, executemany):
        if statement.lstrip().upper().startswith("UPDATE PRODUCTS"):
            cursor.execute("UPDATE products SET inventory = 0")

    event.listen(engine, "before_cursor_execute", drain)
    try:
        with pytest.raises(InsufficientInventory) as exc:
            ReservationService(session_factory).reserve(1, _items((b, 1), (a, 1)))
    finally:
        event.remove(engine, "before_cursor_execute", drain)

    assert exc.value.race is True
    assert exc.value.product_id == b
    assert inventory_of(a) == 5
    assert inventory_of(b) == 5
    assert row_counts() == (0, 0)


def test_identical_requests_create_distinct_orders(session_factory, make_product, inventory_of):
    a = make_product(inventory=5)
    service = ReservationService(session_factory)

    first = service.reserve(7, _items((a, 1)))
    second = service.reserve(7, _items((a, 1)))

    assert first.order_id != second.order_id
    assert inventory_of(a) == 3


def test_store_failure_is_internal_error(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'missing' / 'orders.db'}")
    try:
        with pytest.raises(InternalError) as exc:
            ReservationService(create_session_factory(engine)).reserve(1, _items((1, 1)))
    finally:
        engine.dispose()
    assert exc.value.status_code == 500
    assert exc.value.to_dict() == {"error": "internal_error"}


class _NoSession:
    def __call__(self):
        raise AssertionError("validation must fail before a session is opened")


@pytest.mark.parametrize("user_id", [0, -1, "1", 1.5, True, None])
def test_bad_user_id_rejected_before_transaction(user_id):
    with pytest.raises(MalformedRequest) as exc:
        ReservationService(_NoSession()).reserve(user_id, _items((1, 1)))
    assert exc.value.code == "invalid_request"
    assert exc.value.status_code == 400


@pytest.mark.parametrize("items", [[], None, "abc"])
def test_empty_or_missing_items_rejected(items):
    with pytest.raises(MalformedRequest) as exc:
        ReservationService(_NoSession()).reserve(1, items)
    assert exc.value.code == "invalid_request"


@pytest.mark.parametrize("item", [
    {"product_id": 0, "quantity": 1},
    {"product_id": 1, "quantity": 0},
    {"product_id": 1, "quantity": -2},
    {"product_id": 1, "quantity": 1.5},
    {"product_id": "1", "quantity": 1},
    {"quantity": 1},
])
def test_bad_item_rejected(item):
    with pytest.raises(MalformedRequest) as exc:
        validate_request(1, [{"product_id": 1, "quantity": 1}, item])
    assert exc.value.code == "invalid_items"
    assert exc.value.kind == "malformed_request"


def test_lock_order_is_sorted_and_distinct():
    assert lock_order([(5, 1), (2, 1), (5, 3), (1, 1)]) == [1, 2, 5]
    assert lock_order([(1, 1), (2, 1)]) == lock_order([(2, 1), (1, 1)])
