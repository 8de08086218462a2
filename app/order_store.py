from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Optional

from app.models import PaymentOrderRow


@dataclass(frozen=True)
class PaymentOrder:
    order_id: str
    amount: Decimal
    customer_id: str
    status: str = "initiated"          # initiated | success | failed | pending
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    txn_id: Optional[str] = None
    bank_txn_id: Optional[str] = None

    def with_status(self, status, **changes):
        return replace(self, status=status, **changes)


class MemoryOrderStore:
    def __init__(self):
        self._orders: Dict[str, PaymentOrder] = {}

    def get(self, order_id):
        return self._orders.get(order_id)

    def set(self, order: PaymentOrder):
        self._orders[order.order_id] = order

    def delete(self, order_id):
        self._orders.pop(order_id, None)

    def __contains__(self, order_id):
        return order_id in self._orders


class SqlOrderStore:
    def __init__(self, session_factory):
        self.session_factory = session_factory

    def get(self, order_id):
        db = self.session_factory()
        try:
            row = db.get(PaymentOrderRow, order_id)
            if row is None:
                return None
            return PaymentOrder(
                order_id=row.order_id,
                amount=Decimal(row.amount),
                customer_id=row.customer_id,
                status=row.status,
                created_at=row.created_at,
                txn_id=row.txn_id,
                bank_txn_id=row.bank_txn_id,
            )
        finally:
            db.close()

    def set(self, order: PaymentOrder):
        db = self.session_factory()
        try:
            row = db.get(PaymentOrderRow, order.order_id)
            if row is None:
                row = PaymentOrderRow(order_id=order.order_id, created_at=order.created_at)
                db.add(row)
            row.amount = order.amount
            row.customer_id = order.customer_id
            row.status = order.status
            row.txn_id = order.txn_id
            row.bank_txn_id = order.bank_txn_id
            db.commit()
        finally:
            db.close()

    def delete(self, order_id):
        db = self.session_factory()
        try:
            db.query(PaymentOrderRow).filter_by(order_id=order_id).delete()
            db.commit()
        finally:
            db.close()


class CachedOrderStore:
    """Process-local cache in front of a durable store.

    The backend is the record of truth; a miss in the cache falls through to it.
    """

    def __init__(self, cache, backend):
        self.cache = cache
        self.backend = backend

    def get(self, order_id):
        order = self.cache.get(order_id)
        if order is None:
            order = self.backend.get(order_id)
            if order is not None:
                self.cache.set(order)
        return order

    def set(self, order: PaymentOrder):
        self.backend.set(order)
        self.cache.set(order)

    def delete(self, order_id):
        self.backend.delete(order_id)
        self.cache.delete(order_id)

    def evict(self, order_id):
        self.cache.delete(order_id)
