from fastapi import APIRouter, Depends, Path
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session, sessionmaker
from app.infrastructure.db import get_db, get_session_factory
from app.application.reservation import ReservationService
from app.application.queries import OrderQueries
from app.application.schemas import OrderCreate, OrderCreated, OrderDetail, ProductRead

router = APIRouter(tags=["orders"])

def get_reservation_service(session_factory: sessionmaker = Depends(get_session_factory)) -> ReservationService:
    return ReservationService(session_factory)

@router.get("/products", response_model=list[ProductRead])
def list_products(db: Session = Depends(get_db)):
    return OrderQueries(db).list_products()

@router.get("/orders/{order_id}", response_model=OrderDetail)
def get_order(order_id: int = Path(gt=0), db: Session = Depends(get_db)):
    """Order header plus its items, ordered by product id."""
    detail = OrderQueries(db).get_order(order_id)
    if detail is None:
        return JSONResponse(status_code=404, content={"error": "not_found"})
    return detail

@router.post("/orders", response_model=OrderCreated, status_code=201)
def create_order(payload: OrderCreate, service: ReservationService = Depends(get_reservation_service)):
    """
    Reserve inventory and create a PENDING order.

    Failures are raised as ``ReservationError`` and rendered by the
    application's exception handler.
    """
    return service.reserve(payload.user_id, payload.items)
