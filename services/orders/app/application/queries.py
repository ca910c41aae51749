from typing import Optional
from sqlalchemy import select
from sqlalchemy.orm import Session
from app.domain.models import Order, OrderItem, Product
from .schemas import OrderDetail, OrderItemRead, OrderRead

class OrderQueries:
    """Read-only lookups; plain queries, no locking."""

    def __init__(self, db: Session):
        self.db = db

    def list_products(self):
        return self.db.execute(select(Product).order_by(Product.id)).scalars().all()

    def get_order(self, order_id: int) -> Optional[OrderDetail]:
        order = self.db.get(Order, order_id)
        if order is None:
            return None
        items = self.db.execute(
            select(OrderItem)
            .where(OrderItem.order_id == order_id)
            .order_by(OrderItem.product_id)
        ).scalars().all()
        return OrderDetail(
            order=OrderRead.model_validate(order),
            items=[OrderItemRead.model_validate(i) for i in items],
        )
