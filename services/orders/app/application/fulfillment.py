"""
Fulfillment worker: claims one PENDING order at a time and confirms it.

Any number of workers may poll the same database. A claim is the row lock
taken by ``SELECT ... FOR UPDATE SKIP LOCKED`` inside the worker's open
transaction, so a worker never waits on an order another worker holds and two
workers never hold the same order. If the work or the write fails, rolling
back releases the lock and the order is PENDING again for the next poll.
"""

import threading
import time
from typing import Callable, Optional
from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from shared.core import clear_job_context, get_logger, set_request_context
from app.domain.errors import ClaimLost
from app.domain.models import Order, OrderStatus

logger = get_logger(__name__)

FulfillFn = Callable[[Order], None]


class SimulatedFulfillment:
    """Stands in for payment / shipment integration: takes ``work_seconds``."""

    def __init__(self, work_seconds: float, sleep: Callable[[float], None] = time.sleep):
        self.work_seconds = work_seconds
        self.sleep = sleep

    def __call__(self, order: Order) -> None:
        self.sleep(self.work_seconds)


def claim_next(session: Session) -> Optional[Order]:
    """Lock the lowest-id PENDING order nobody else holds, or return None."""
    return session.execute(
        select(Order)
        .where(Order.status == OrderStatus.PENDING.value)
        .order_by(Order.id)
        .limit(1)
        .with_for_update(skip_locked=True)
    ).scalar_one_or_none()


def mark_confirmed(session: Session, order_id: int) -> None:
    result = session.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == OrderStatus.PENDING.value)
        .values(status=OrderStatus.CONFIRMED.value)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ClaimLost(order_id)


class FulfillmentWorker:
    """
    Polling loop around ``run_once``.

    ``run`` keeps going until ``stop`` is called. Stopping interrupts the
    sleeps between iterations but never an iteration in progress.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        fulfill: Optional[FulfillFn] = None,
        poll_interval: float = 1.0,
        error_backoff: float = 1.0,
        stop_event: Optional[threading.Event] = None,
    ):
        self.session_factory = session_factory
        self.fulfill = fulfill or SimulatedFulfillment(3.0)
        self.poll_interval = poll_interval
        self.error_backoff = error_backoff
        self.stop_event = stop_event or threading.Event()
        self.confirmed = 0
        self.failures = 0

    def stop(self) -> None:
        self.stop_event.set()

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    def run_once(self) -> bool:
        """
        One claim attempt in one transaction.

        Returns True if an order was confirmed, False if nothing was
        claimable. Exceptions propagate after the transaction is rolled back.
        """
        # TODO: bound the fulfill() call and roll back on timeout; a hung
        # step currently keeps its order locked for as long as it hangs.
        with self.session_factory() as session, session.begin():
            order = claim_next(session)
            if order is None:
                return False

            order_id = order.id
            set_request_context(order_id=str(order_id), user_id=str(order.user_id))
            logger.info(
                "job_claimed",
                extra={'extra_fields': {'order_id': order_id, 'user_id': order.user_id}}
            )

            self.fulfill(order)
            mark_confirmed(session, order_id)

        self.confirmed += 1
        logger.info("job_confirmed", extra={'extra_fields': {'order_id': order_id}})
        return True

    def run(self) -> None:
        logger.info(
            "worker_started",
            extra={'extra_fields': {
                'poll_ms': int(self.poll_interval * 1000),
                'error_backoff_ms': int(self.error_backoff * 1000),
            }}
        )

        while not self.stopping:
            try:
                processed = self.run_once()
            except Exception as e:
                self.failures += 1
                logger.error(
                    "worker_error",
                    exc_info=True,
                    extra={'extra_fields': {'err': str(e)}}
                )
                self.stop_event.wait(self.error_backoff)
                continue
            finally:
                clear_job_context()

            # Drain the backlog without sleeping while there is work
            if not processed:
                self.stop_event.wait(self.poll_interval)

        logger.info(
            "worker_stopped",
            extra={'extra_fields': {'confirmed': self.confirmed, 'failures': self.failures}}
        )
