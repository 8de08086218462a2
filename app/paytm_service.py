import hashlib
import hmac
import logging
import os
import random
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

import httpx
from dotenv import load_dotenv

from app.order_store import PaymentOrder

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

logger = logging.getLogger(__name__)

PRODUCTION_BASE_URL = "https://securegw.paytm.in"
STAGING_BASE_URL = "https://securegw-stage.paytm.in"

REQUIRED_CALLBACK_FIELDS = ("ORDERID", "TXNID", "TXNAMOUNT", "STATUS")

STATUS_MESSAGES = {
    "TXN_SUCCESS": "Payment completed successfully",
    "TXN_FAILURE": "Payment failed",
    "PENDING": "Payment is pending",
    "CANCEL": "Payment cancelled by user",
    "INVALID": "Invalid payment details",
}

_STATUS_MAP = {
    "TXN_SUCCESS": "success",
    "TXN_FAILURE": "failed",
    "CANCEL": "failed",
    "INVALID": "failed",
    "PENDING": "pending",
}


class GatewayError(Exception):
    """Transport-level fault talking to the gateway."""


@dataclass(frozen=True)
class GatewayRejection:
    message: str
    code: Optional[str] = None


@dataclass(frozen=True)
class InitiatedPayment:
    order: PaymentOrder
    txn_token: str
    params: dict


@dataclass(frozen=True)
class PaymentStatus:
    order_id: str
    status: str                  # success | pending | failed
    gateway_status: str
    txn_id: Optional[str] = None
    amount: Optional[str] = None
    bank_txn_id: Optional[str] = None
    currency: Optional[str] = None

    @property
    def message(self):
        return status_message(self.gateway_status)


@dataclass(frozen=True)
class PaytmConfig:
    mid: str
    merchant_key: str
    website: str
    channel_id: str
    base_url: str
    callback_url: str
    industry_type_id: str = "Retail"

    @classmethod
    def from_env(cls):
        production = os.getenv("PAYTM_ENV", "staging") == "production"
        app_url = os.getenv("APP_URL", "http://localhost:8000").rstrip("/")
        return cls(
            mid=os.getenv("PAYTM_MID", "YOUR_PAYTM_MID"),
            merchant_key=os.getenv("PAYTM_MERCHANT_KEY", "YOUR_PAYTM_MERCHANT_KEY"),
            website=os.getenv("PAYTM_WEBSITE", "WEBSTAGING"),
            channel_id="WEB" if production else "WEBSTAGING",
            base_url=PRODUCTION_BASE_URL if production else STAGING_BASE_URL,
            callback_url=f"{app_url}/api/paytm/callback",
        )

    @property
    def initiate_url(self):
        return f"{self.base_url}/theia/api/v1/initiateTransaction"

    @property
    def status_url(self):
        return f"{self.base_url}/order/status"


def build_checksum(params: dict, secret_key: str) -> str:
    """SHA-256 over ``k1=v1&k2=v2...&KEY=<secret>`` with keys in sorted order."""
    payload = "&".join(f"{key}={params[key]}" for key in sorted(params))
    payload = f"{payload}&KEY={secret_key}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def verify_checksum(params: dict, received: str, secret_key: str) -> bool:
    if not received:
        return False
    return hmac.compare_digest(build_checksum(params, secret_key), received)


def generate_order_id() -> str:
    return f"ORDER_{int(time.time() * 1000)}_{random.randint(0, 999999)}"


CENTS = Decimal("0.01")


def to_cents(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {amount!r}") from e
    if not value.is_finite():
        raise ValueError(f"Invalid amount: {amount!r}")
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def format_amount(amount) -> str:
    return f"{to_cents(amount):.2f}"


def status_message(gateway_status: str) -> str:
    return STATUS_MESSAGES.get(gateway_status, "Unknown payment status")


def map_gateway_status(gateway_status: str) -> str:
    return _STATUS_MAP.get(gateway_status, "pending")


def validate_callback(fields: dict) -> bool:
    return all(fields.get(name) not in (None, "") for name in REQUIRED_CALLBACK_FIELDS)


def _post(url: str, payload: dict) -> dict:
    try:
        response = httpx.post(url, json=payload)
        response.raise_for_status()
        return response.json()
    except httpx.HTTPError as e:
        raise GatewayError(f"Gateway request to {url} failed: {e}") from e
    except ValueError as e:
        raise GatewayError(f"Gateway returned a malformed body from {url}") from e


def _head(body: dict) -> dict:
    head = body.get("HEAD") if isinstance(body, dict) else None
    if not isinstance(head, dict):
        raise GatewayError("Gateway response has no HEAD section")
    return head


def _body(body: dict) -> dict:
    section = body.get("BODY", {})
    if section is None:
        return {}
    if not isinstance(section, dict):
        raise GatewayError("Gateway response BODY section is malformed")
    return section


def initiate_payment(config: PaytmConfig, store, amount, customer_id: str,
                     email: str = "", phone: str = ""):
    """Returns ``InitiatedPayment`` or ``GatewayRejection``; raises ``GatewayError``."""
    amount = to_cents(amount)
    if amount <= 0:
        raise ValueError("Amount must be greater than zero")
    if not customer_id:
        raise ValueError("Customer ID is required")

    order_id = generate_order_id()
    params = {
        "MID": config.mid,
        "WEBSITE": config.website,
        "INDUSTRY_TYPE_ID": config.industry_type_id,
        "CHANNEL_ID": config.channel_id,
        "ORDER_ID": order_id,
        "CUST_ID": customer_id,
        "MOBILE_NO": phone or "",
        "EMAIL": email or "",
        "TXN_AMOUNT": format_amount(amount),
        "CALLBACK_URL": config.callback_url,
    }
    params["CHECKSUMHASH"] = build_checksum(params, config.merchant_key)

    body = _post(config.initiate_url, params)
    head = _head(body)
    if head.get("responseCode") != "OK":
        message = head.get("responseMessage") or "Failed to initiate payment"
        logger.warning("Gateway rejected order %s: %s", order_id, message)
        return GatewayRejection(message=message, code=head.get("responseCode"))

    txn_token = _body(body).get("txnToken")
    if not txn_token:
        raise GatewayError("Gateway accepted the order without a transaction token")

    order = PaymentOrder(order_id=order_id, amount=amount, customer_id=customer_id)
    store.set(order)
    logger.info("Initiated payment %s for customer %s", order_id, customer_id)
    return InitiatedPayment(order=order, txn_token=txn_token, params=params)


def check_status(config: PaytmConfig, store, order_id: str):
    """Always asks the gateway; local bookkeeping is refreshed when present."""
    if not order_id:
        raise ValueError("Order ID is required")

    params = {"MID": config.mid, "ORDERID": order_id}
    params["CHECKSUMHASH"] = build_checksum(params, config.merchant_key)

    body = _post(config.status_url, params)
    head = _head(body)
    if head.get("responseCode") != "OK":
        message = head.get("responseMessage") or "Failed to get payment status"
        logger.warning("Gateway status query for %s rejected: %s", order_id, message)
        return GatewayRejection(message=message, code=head.get("responseCode"))

    result = _body(body)
    gateway_status = result.get("STATUS", "")
    status = PaymentStatus(
        order_id=order_id,
        status=map_gateway_status(gateway_status),
        gateway_status=gateway_status,
        txn_id=result.get("TXNID"),
        amount=result.get("TXNAMOUNT"),
        bank_txn_id=result.get("BANKTXNID"),
        currency=result.get("CURRENCY"),
    )

    order = store.get(order_id)
    if order is None:
        logger.info("Status for %s fetched without local record", order_id)
    elif order.status != status.status:
        store.set(order.with_status(status.status, txn_id=status.txn_id,
                                    bank_txn_id=status.bank_txn_id))
    return status
