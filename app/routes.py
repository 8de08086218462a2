import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.auth import verify_token
from app.cart import load_cart
from app.database import SessionLocal
from app.order_store import CachedOrderStore, MemoryOrderStore, SqlOrderStore
from app.paytm_service import (
    GatewayError,
    GatewayRejection,
    PaytmConfig,
    check_status,
    initiate_payment,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/paytm")

order_store = CachedOrderStore(MemoryOrderStore(), SqlOrderStore(lambda: SessionLocal()))


def get_paytm_config():
    return PaytmConfig.from_env()


class InitiateRequest(BaseModel):
    customer_id: str
    amount: Optional[Decimal] = None
    cart_id: Optional[str] = None
    email: str = ""
    phone: str = ""


class StatusRequest(BaseModel):
    order_id: str


def _failure(status_code: int, error: str):
    return JSONResponse(status_code=status_code, content={"success": False, "error": error})


def _cart_total(cart_id: str) -> Decimal:
    db = SessionLocal()
    try:
        cart = load_cart(db, cart_id)
    finally:
        db.close()
    if not cart.lines:
        raise HTTPException(status_code=400, detail="Cart is empty")
    return cart.totals().total


@router.post("/initiate")
def initiate_payment_api(
    request: InitiateRequest,
    auth=Depends(verify_token),
    config: PaytmConfig = Depends(get_paytm_config),
):
    amount = _cart_total(request.cart_id) if request.cart_id else request.amount
    if amount is None or amount <= 0 or not request.customer_id:
        raise HTTPException(status_code=400, detail="Amount and customer ID are required")

    try:
        result = initiate_payment(
            config, order_store, amount, request.customer_id,
            email=request.email, phone=request.phone,
        )
    except ValueError as e:
        return _failure(400, str(e))
    except GatewayError:
        logger.exception("Paytm initiate error")
        return _failure(502, "Payment gateway unavailable")

    if isinstance(result, GatewayRejection):
        return _failure(400, result.message)

    return {
        "success": True,
        "order_id": result.order.order_id,
        "txn_token": result.txn_token,
        "amount": f"{result.order.amount:.2f}",
        "paytm_params": result.params,
    }


@router.post("/status")
def payment_status_api(
    request: StatusRequest,
    auth=Depends(verify_token),
    config: PaytmConfig = Depends(get_paytm_config),
):
    if not request.order_id:
        raise HTTPException(status_code=400, detail="Order ID is required")

    try:
        result = check_status(config, order_store, request.order_id)
    except GatewayError:
        logger.exception("Paytm status check error")
        return _failure(502, "Payment gateway unavailable")

    if isinstance(result, GatewayRejection):
        return _failure(400, result.message)

    return {
        "success": True,
        "order_id": result.order_id,
        "status": result.status,
        "payment_status": result.gateway_status,
        "message": result.message,
        "transaction_id": result.txn_id,
        "amount": result.amount,
        "bank_transaction_id": result.bank_txn_id,
        "currency": result.currency,
    }
