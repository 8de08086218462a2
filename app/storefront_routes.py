import logging
from decimal import Decimal

from fastapi import APIRouter, HTTPException, Request, Response
from pydantic import BaseModel

from app.cart import Cart, CartSession, cart_key, load_cart, save_cart
from app.database import SessionLocal
from app.pincode import (
    CookieStore,
    HeaderStore,
    PincodeBus,
    PincodeResolver,
    is_valid_pincode,
)
from app.serviceability import check_serviceability, decide_redirect

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

pincode_bus = PincodeBus("storage")
pincode_fallback_bus = PincodeBus("pincodeChange")


def _log_pincode_change(event):
    logger.info("Pincode changed from %s to %s", event.old_value or "-", event.new_value)


pincode_bus.subscribe(_log_pincode_change)
pincode_fallback_bus.subscribe(_log_pincode_change)


class PincodeUpdate(BaseModel):
    pincode: str
    path: str = "/"


class CartItemRequest(BaseModel):
    product_id: str
    name: str = ""
    unit_price: Decimal
    image_ref: str = ""


class QuantityUpdate(BaseModel):
    quantity: int


def _resolver(request: Request, response: Response, bus: PincodeBus = None):
    return PincodeResolver(
        durable=CookieStore(request, response),
        cache=HeaderStore(request, response),
        bus=bus or pincode_bus,
        fallback_bus=pincode_fallback_bus,
    )


def _serviceability(pincode: str):
    db = SessionLocal()
    try:
        return check_serviceability(db, pincode)
    finally:
        db.close()


def _cart_payload(cart: Cart):
    totals = cart.totals()
    return {
        "cart_id": cart.cart_id,
        "items": [
            {
                "product_id": line.product_id,
                "name": line.name,
                "unit_price": f"{line.unit_price:.2f}",
                "quantity": line.quantity,
                "image_ref": line.image_ref,
            }
            for line in cart.lines
        ],
        "count": cart.count,
        "subtotal": f"{totals.subtotal:.2f}",
        "delivery_fee": f"{totals.delivery_fee:.2f}",
        "total": f"{totals.total:.2f}",
    }


@router.get("/pincode")
def get_pincode(request: Request, response: Response):
    resolver = _resolver(request, response)
    try:
        selection = resolver.resolve()
    finally:
        resolver.close()

    result = _serviceability(selection.value) if selection.usable else None
    return {
        "pincode": selection.value,
        "source": selection.source,
        "serviceable": bool(result and result.serviceable),
        "delivery_message": result.delivery_message if result else None,
    }


@router.put("/pincode")
def update_pincode(body: PincodeUpdate, request: Request, response: Response):
    if not is_valid_pincode(body.pincode):
        raise HTTPException(status_code=400, detail="Invalid pincode format. Must be a 6-digit number")

    # request-scoped: only this request's cart session listens
    bus = PincodeBus("storage")
    bus.subscribe(_log_pincode_change)
    resolver = _resolver(request, response, bus)
    db = SessionLocal()
    try:
        session = CartSession(lambda key: load_cart(db, key), pincode=resolver.resolve().value)
        bus.subscribe(session.handle_pincode_changed)
        resolver.update(body.pincode)
        cart = _cart_payload(session.cart)
    finally:
        resolver.close()
        db.close()

    result = _serviceability(body.pincode)
    return {
        "pincode": body.pincode,
        "serviceable": result.serviceable,
        "known": result.known,
        "delivery_message": result.delivery_message,
        "redirect": decide_redirect(body.path, body.pincode, result),
        "cart": cart,
    }


@router.get("/serviceability")
def serviceability(pincode: str = "", path: str = "/"):
    if pincode and not is_valid_pincode(pincode):
        raise HTTPException(status_code=400, detail="Invalid pincode format. Must be a 6-digit number")

    result = _serviceability(pincode) if pincode else None
    return {
        "pincode": pincode,
        "serviceable": bool(result and result.serviceable),
        "known": result.known if result else True,
        "delivery_message": result.delivery_message if result else None,
        "redirect": decide_redirect(path, pincode, result),
    }



def _active_cart_id(request: Request, response: Response) -> str:
    resolver = _resolver(request, response)
    try:
        selection = resolver.resolve()
    finally:
        resolver.close()
    if not selection.usable:
        raise HTTPException(status_code=400, detail="Select a delivery pincode first")
    return cart_key(selection.value)


def _show_cart(cart_id: str):
    db = SessionLocal()
    try:
        return _cart_payload(load_cart(db, cart_id))
    finally:
        db.close()


def _add_item(cart_id: str, item: CartItemRequest):
    if item.unit_price < 0:
        raise HTTPException(status_code=400, detail="Unit price must not be negative")

    db = SessionLocal()
    try:
        cart = load_cart(db, cart_id)
        cart.add_item(item.product_id, item.name, item.unit_price, item.image_ref)
        save_cart(db, cart)
        return _cart_payload(cart)
    finally:
        db.close()


def _set_quantity(cart_id: str, product_id: str, quantity: int):
    if quantity < 0:
        raise HTTPException(status_code=400, detail="Quantity must not be negative")

    db = SessionLocal()
    try:
        cart = load_cart(db, cart_id)
        if not cart.set_quantity(product_id, quantity):
            raise HTTPException(status_code=404, detail="Item not in cart")
        save_cart(db, cart)
        return _cart_payload(cart)
    finally:
        db.close()


def _remove_item(cart_id: str, product_id: str):
    db = SessionLocal()
    try:
        cart = load_cart(db, cart_id)
        cart.remove(product_id)
        save_cart(db, cart)
        return _cart_payload(cart)
    finally:
        db.close()


def _clear(cart_id: str):
    db = SessionLocal()
    try:
        cart = load_cart(db, cart_id)
        cart.clear()
        save_cart(db, cart)
        return _cart_payload(cart)
    finally:
        db.close()


# Cart of the currently selected pincode (cookie, else X-Pincode header).

@router.get("/cart")
def get_active_cart(request: Request, response: Response):
    return _show_cart(_active_cart_id(request, response))


@router.post("/cart/items")
def add_active_cart_item(item: CartItemRequest, request: Request, response: Response):
    return _add_item(_active_cart_id(request, response), item)


@router.put("/cart/items/{product_id}")
def set_active_cart_quantity(product_id: str, body: QuantityUpdate, request: Request,
                             response: Response):
    return _set_quantity(_active_cart_id(request, response), product_id, body.quantity)


@router.delete("/cart/items/{product_id}")
def remove_active_cart_item(product_id: str, request: Request, response: Response):
    return _remove_item(_active_cart_id(request, response), product_id)


@router.delete("/cart")
def clear_active_cart(request: Request, response: Response):
    return _clear(_active_cart_id(request, response))


# Addressed by cart id, as used by checkout.

@router.get("/carts/{cart_id}")
def get_cart(cart_id: str):
    return _show_cart(cart_id)


@router.post("/carts/{cart_id}/items")
def add_cart_item(cart_id: str, item: CartItemRequest):
    return _add_item(cart_id, item)


@router.put("/carts/{cart_id}/items/{product_id}")
def set_cart_quantity(cart_id: str, product_id: str, body: QuantityUpdate):
    return _set_quantity(cart_id, product_id, body.quantity)


@router.delete("/carts/{cart_id}/items/{product_id}")
def remove_cart_item(cart_id: str, product_id: str):
    return _remove_item(cart_id, product_id)


@router.delete("/carts/{cart_id}")
def clear_cart(cart_id: str):
    return _clear(cart_id)
