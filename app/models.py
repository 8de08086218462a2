from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, Numeric, DateTime, JSON
from app.database import Base

DEFAULT_DELIVERY_MESSAGE = "Delivery in 8 minutes"


def _utcnow():
    return datetime.now(timezone.utc)


class Vendor(Base):
    __tablename__ = "vendors"

    id = Column(String, primary_key=True)
    name = Column(String, default="")
    status = Column(String, default="active", index=True)   # active | inactive
    pincodes = Column(JSON, default=list)                   # list of 6-digit strings
    delivery_message = Column(String, default=DEFAULT_DELIVERY_MESSAGE)


class ServicePincode(Base):
    __tablename__ = "service_pincodes"

    pincode = Column(String(6), primary_key=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class CartLineRow(Base):
    __tablename__ = "cart_lines"

    cart_id = Column(String, primary_key=True)
    product_id = Column(String, primary_key=True)
    name = Column(String, default="")
    unit_price = Column(Numeric(10, 2))
    quantity = Column(Integer)
    image_ref = Column(String, default="")
    position = Column(Integer, default=0)                   # insertion order


class PaymentOrderRow(Base):
    __tablename__ = "payment_orders"

    order_id = Column(String, primary_key=True)              # ORDER_<millis>_<random>
    amount = Column(Numeric(10, 2))
    customer_id = Column(String, index=True)
    status = Column(String)                                 # initiated | success | failed | pending
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    txn_id = Column(String, nullable=True)
    bank_txn_id = Column(String, nullable=True)
