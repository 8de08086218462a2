from decimal import Decimal

from app.order_store import CachedOrderStore, MemoryOrderStore, PaymentOrder, SqlOrderStore
from app.models import PaymentOrderRow


def _order(order_id="ORDER_1_1", status="initiated"):
    return PaymentOrder(order_id=order_id, amount=Decimal("290.00"),
                        customer_id="cust-1", status=status)


def test_memory_store():
    store = MemoryOrderStore()
    store.set(_order())

    assert store.get("ORDER_1_1").amount == Decimal("290.00")
    store.delete("ORDER_1_1")
    assert store.get("ORDER_1_1") is None


def test_sql_store_round_trip(db, session_factory):
    store = SqlOrderStore(session_factory)
    store.set(_order())
    store.set(_order(status="success"))

    assert db.query(PaymentOrderRow).count() == 1
    loaded = store.get("ORDER_1_1")
    assert loaded.status == "success"
    assert loaded.amount == Decimal("290.00")

    store.delete("ORDER_1_1")
    assert store.get("ORDER_1_1") is None


def test_cached_store_survives_lost_cache():
    backend = MemoryOrderStore()
    store = CachedOrderStore(MemoryOrderStore(), backend)
    store.set(_order())

    # process restart: the local cache is gone, the backend is not
    restarted = CachedOrderStore(MemoryOrderStore(), backend)

    assert restarted.get("ORDER_1_1").customer_id == "cust-1"
    assert "ORDER_1_1" in restarted.cache


def test_cached_store_evict_keeps_backend():
    store = CachedOrderStore(MemoryOrderStore(), MemoryOrderStore())
    store.set(_order())

    store.evict("ORDER_1_1")

    assert "ORDER_1_1" not in store.cache
    assert store.get("ORDER_1_1") is not None


def test_cached_store_delete():
    store = CachedOrderStore(MemoryOrderStore(), MemoryOrderStore())
    store.set(_order())

    store.delete("ORDER_1_1")

    assert store.get("ORDER_1_1") is None
