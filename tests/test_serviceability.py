import pytest
from sqlalchemy.exc import OperationalError

from app.models import Vendor
from app.serviceability import (
    COMING_SOON_PATH,
    UNKNOWN,
    CompletionGuard,
    Serviceability,
    check_serviceability,
    decide_redirect,
)


def _seed_vendors(db):
    db.add(Vendor(id="v1", name="Closed Store", status="inactive",
                  pincodes=["560001"], delivery_message="Closed"))
    db.add(Vendor(id="v2", name="Fresh Mart", status="active",
                  pincodes=["560001", "560002"], delivery_message="Delivery in 10 minutes"))
    db.add(Vendor(id="v3", name="Default Mart", status="active", pincodes=["110001"]))
    db.commit()


def test_serviceable_pincode_returns_vendor_message(db):
    _seed_vendors(db)

    result = check_serviceability(db, "560001")

    assert result == Serviceability(serviceable=True, delivery_message="Delivery in 10 minutes")


def test_default_delivery_message(db):
    _seed_vendors(db)

    assert check_serviceability(db, "110001").delivery_message == "Delivery in 8 minutes"


def test_unserviceable_pincode(db):
    _seed_vendors(db)

    result = check_serviceability(db, "999999")

    assert result.serviceable is False
    assert result.known is True


def test_inactive_vendor_does_not_count(db):
    db.add(Vendor(id="v1", status="inactive", pincodes=["400001"]))
    db.commit()

    assert check_serviceability(db, "400001").serviceable is False


@pytest.mark.parametrize("pincode", ["", "56000", "abcdef", "560001\n"])
def test_invalid_or_missing_pincode_is_unserviceable(db, pincode):
    _seed_vendors(db)

    assert check_serviceability(db, pincode).serviceable is False


def test_query_failure_degrades_to_unknown(mocker):
    db = mocker.Mock()
    db.query.side_effect = OperationalError("SELECT", {}, Exception("db down"))

    assert check_serviceability(db, "560001") == UNKNOWN


def test_redirect_when_unserviceable():
    result = Serviceability(serviceable=False)
    assert decide_redirect("/", "999999", result) == COMING_SOON_PATH
    assert decide_redirect("/category/fruits", "999999", result) == "/coming-soon"


@pytest.mark.parametrize("path", [
    "/terms", "/privacy", "/about", "/auth-debug", "/coming-soon",
    "/admin/orders", "/api/cart", "/_next/static/x", "/favicon.ico", "/robots.txt",
])
def test_exempt_paths_never_redirect(path):
    assert decide_redirect(path, "999999", Serviceability(serviceable=False)) is None


def test_no_redirect_when_serviceable():
    assert decide_redirect("/", "560001", Serviceability(serviceable=True)) is None


def test_no_redirect_without_pincode():
    assert decide_redirect("/", "", Serviceability(serviceable=False)) is None
    assert decide_redirect("/", "", None) is None


def test_unknown_result_does_not_block():
    assert decide_redirect("/", "560001", UNKNOWN) is None


def test_completion_guard_discards_after_cancel():
    received = []
    guard = CompletionGuard()

    assert guard.deliver("first", received.append) is True
    guard.cancel()
    assert guard.deliver("second", received.append) is False

    assert received == ["first"]


def test_serviceability_endpoint(client, db):
    _seed_vendors(db)

    response = client.get("/api/serviceability", params={"pincode": "560002", "path": "/"})

    assert response.status_code == 200
    assert response.json() == {
        "pincode": "560002",
        "serviceable": True,
        "known": True,
        "delivery_message": "Delivery in 10 minutes",
        "redirect": None,
    }


def test_serviceability_endpoint_redirects(client, db):
    _seed_vendors(db)

    response = client.get("/api/serviceability", params={"pincode": "999999", "path": "/menu"})

    assert response.json()["redirect"] == "/coming-soon"


def test_serviceability_endpoint_rejects_malformed_pincode(client):
    response = client.get("/api/serviceability", params={"pincode": "12345"})

    assert response.status_code == 400


def test_pincode_update_then_resolve(client, db):
    _seed_vendors(db)

    update = client.put("/api/pincode", json={"pincode": "560001", "path": "/"})

    assert update.status_code == 200
    assert update.json()["serviceable"] is True
    assert update.json()["redirect"] is None
    assert update.headers["X-Pincode"] == "560001"
    assert "user_pincode=560001" in update.headers["set-cookie"]
    assert "Max-Age=2592000" in update.headers["set-cookie"]

    resolved = client.get("/api/pincode")
    assert resolved.json() == {
        "pincode": "560001",
        "source": "cookie",
        "serviceable": True,
        "delivery_message": "Delivery in 10 minutes",
    }


def test_pincode_resolved_from_local_cache_header(client, db):
    _seed_vendors(db)

    response = client.get("/api/pincode", headers={"X-Pincode": "110001"})

    assert response.json()["source"] == "cache"
    assert response.json()["serviceable"] is True
    assert "user_pincode=110001" in response.headers["set-cookie"]


def test_pincode_resolve_empty(client):
    response = client.get("/api/pincode")

    assert response.json() == {
        "pincode": "",
        "source": "none",
        "serviceable": False,
        "delivery_message": None,
    }


@pytest.mark.parametrize("pincode", ["56A001", "560001\n", "٥٦٠٠٠١"])
def test_pincode_update_rejects_malformed(client, pincode):
    response = client.put("/api/pincode", json={"pincode": pincode})

    assert response.status_code == 400
    assert "user_pincode" not in client.cookies


def test_pincode_update_unserviceable_redirects(client, db):
    _seed_vendors(db)

    response = client.put("/api/pincode", json={"pincode": "999999", "path": "/"})

    assert response.json()["serviceable"] is False
    assert response.json()["redirect"] == "/coming-soon"
