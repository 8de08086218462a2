import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Dict, List

from dotenv import load_dotenv

from app.models import CartLineRow
from app.pincode import PincodeChanged

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def delivery_fee() -> Decimal:
    return Decimal(os.getenv("DELIVERY_FEE", "40")).quantize(CENTS)


def cart_key(pincode: str) -> str:
    return f"cart_{pincode}"


@dataclass
class CartLine:
    product_id: str
    name: str
    unit_price: Decimal
    quantity: int
    image_ref: str = ""

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class CartTotals:
    subtotal: Decimal
    delivery_fee: Decimal
    total: Decimal


class Cart:
    def __init__(self, cart_id: str = "", lines: List[CartLine] = None, fee: Decimal = None):
        self.cart_id = cart_id
        self.fee = delivery_fee() if fee is None else Decimal(fee)
        self._lines: Dict[str, CartLine] = {}
        for line in lines or []:
            if line.quantity > 0:
                self._lines[line.product_id] = line

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    @property
    def count(self) -> int:
        return sum(line.quantity for line in self._lines.values())

    def get(self, product_id: str):
        return self._lines.get(product_id)

    def add_item(self, product_id: str, name: str, unit_price, image_ref: str = "") -> CartLine:
        unit_price = Decimal(str(unit_price))
        if unit_price < 0:
            raise ValueError("unit_price must not be negative")

        line = self._lines.get(product_id)
        if line is not None:
            line.quantity += 1
            return line

        line = CartLine(product_id=product_id, name=name, unit_price=unit_price,
                        quantity=1, image_ref=image_ref)
        self._lines[product_id] = line
        return line

    def set_quantity(self, product_id: str, quantity: int) -> bool:
        """Returns False when the change is rejected (negative or unknown product)."""
        if quantity < 0:
            return False
        if quantity == 0:
            self._lines.pop(product_id, None)
            return True
        line = self._lines.get(product_id)
        if line is None:
            return False
        line.quantity = quantity
        return True

    def remove(self, product_id: str) -> None:
        self._lines.pop(product_id, None)

    def clear(self) -> None:
        self._lines.clear()

    def totals(self) -> CartTotals:
        subtotal = sum((line.line_total for line in self._lines.values()), Decimal("0"))
        subtotal = subtotal.quantize(CENTS)
        return CartTotals(subtotal=subtotal, delivery_fee=self.fee, total=subtotal + self.fee)


def load_cart(db, cart_id: str) -> Cart:
    rows = (
        db.query(CartLineRow)
        .filter_by(cart_id=cart_id)
        .order_by(CartLineRow.position)
        .all()
    )
    lines = [
        CartLine(
            product_id=row.product_id,
            name=row.name,
            unit_price=Decimal(row.unit_price),
            quantity=row.quantity,
            image_ref=row.image_ref or "",
        )
        for row in rows
    ]
    return Cart(cart_id, lines)


def save_cart(db, cart: Cart) -> None:
    db.query(CartLineRow).filter_by(cart_id=cart.cart_id).delete()
    for position, line in enumerate(cart.lines):
        db.add(CartLineRow(
            cart_id=cart.cart_id,
            product_id=line.product_id,
            name=line.name,
            unit_price=line.unit_price,
            quantity=line.quantity,
            image_ref=line.image_ref,
            position=position,
        ))
    db.commit()


class CartSession:
    """Keeps the active cart in step with the selected pincode."""

    def __init__(self, load: Callable[[str], Cart], pincode: str = ""):
        self.load = load
        self.pincode = pincode
        self.cart = load(cart_key(pincode))

    def handle_pincode_changed(self, event: PincodeChanged) -> None:
        if event.new_value == self.pincode:
            return
        logger.info("Switching cart from %s to %s", self.pincode or "-", event.new_value or "-")
        self.pincode = event.new_value
        self.cart = self.load(cart_key(event.new_value))
