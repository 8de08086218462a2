import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from app.models import Vendor
from app.pincode import is_valid_pincode

logger = logging.getLogger(__name__)

COMING_SOON_PATH = "/coming-soon"

EXEMPT_PATHS = {"/auth-debug", "/terms", "/privacy", "/about", COMING_SOON_PATH}
EXEMPT_PREFIXES = ("/admin", "/api", "/_next", "/favicon")


@dataclass(frozen=True)
class Serviceability:
    serviceable: bool
    delivery_message: Optional[str] = None
    known: bool = True


UNSERVICEABLE = Serviceability(serviceable=False)
UNKNOWN = Serviceability(serviceable=False, known=False)


def find_delivering_vendor(vendors, pincode: str):
    """First vendor in retrieval order whose pincodes include ``pincode``."""
    for vendor in vendors:
        if vendor.status == "active" and pincode in (vendor.pincodes or []):
            return vendor
    return None


def check_serviceability(db, pincode: str) -> Serviceability:
    if not is_valid_pincode(pincode):
        return UNSERVICEABLE

    try:
        vendors = db.query(Vendor).filter_by(status="active").all()
    except SQLAlchemyError:
        logger.exception("Error checking pincode serviceability for %s", pincode)
        return UNKNOWN

    vendor = find_delivering_vendor(vendors, pincode)
    if vendor is None:
        return UNSERVICEABLE
    return Serviceability(serviceable=True, delivery_message=vendor.delivery_message)


def is_exempt_path(path: str) -> bool:
    return (
        path in EXEMPT_PATHS
        or path.startswith(EXEMPT_PREFIXES)
        or "." in path
    )


def decide_redirect(path: str, pincode: str, result: Optional[Serviceability]) -> Optional[str]:
    """Where to send a view at ``path``, or None to stay.

    No selection means the pincode picker is shown rather than a redirect, and
    an unknown result (lookup failed) never blocks the page.
    """
    if is_exempt_path(path):
        return None
    if not pincode or result is None:
        return None
    if not result.known or result.serviceable:
        return None
    return COMING_SOON_PATH


class CompletionGuard:
    """Drops results of reads that finish after their view went away."""

    def __init__(self):
        self.active = True

    def cancel(self):
        self.active = False

    def deliver(self, result, callback) -> bool:
        if not self.active:
            logger.debug("Discarding result for cancelled view")
            return False
        callback(result)
        return True
