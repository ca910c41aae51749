from pydantic import BaseModel, StrictInt
from datetime import datetime
from typing import Optional

# Strict: JSON true or "3" must not be coerced into an id or quantity
class OrderItemCreate(BaseModel):
    product_id: StrictInt
    quantity: StrictInt

class OrderCreate(BaseModel):
    user_id: StrictInt
    items: list[OrderItemCreate]

class OrderCreated(BaseModel):
    order_id: int
    status: str

class OrderItemRead(BaseModel):
    product_id: int
    quantity: int
    class Config:
        from_attributes = True

class OrderRead(BaseModel):
    id: int
    user_id: int
    status: str
    created_at: Optional[datetime] = None
    class Config:
        from_attributes = True

class OrderDetail(BaseModel):
    order: OrderRead
    items: list[OrderItemRead]

class ProductRead(BaseModel):
    id: int
    sku: str
    name: str
    inventory: int
    class Config:
        from_attributes = True
