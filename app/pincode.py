"""Pincode selection: durable cookie + fast local cache, with change broadcast.

A resolver stands for one open view of a session. Views sharing a
``PincodeBus`` see each other's updates without reloading.
"""
import logging
import re
from dataclasses import dataclass
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

PINCODE_COOKIE = "user_pincode"
PINCODE_CACHE_KEY = "pincode"
COOKIE_EXPIRY_DAYS = 30
COOKIE_MAX_AGE = COOKIE_EXPIRY_DAYS * 24 * 60 * 60

_PINCODE_RE = re.compile(r"[0-9]{6}")


def is_valid_pincode(value) -> bool:
    return isinstance(value, str) and _PINCODE_RE.fullmatch(value) is not None


@dataclass(frozen=True)
class PincodeSelection:
    value: str = ""
    source: str = "none"        # cookie | cache | none

    @property
    def usable(self) -> bool:
        return is_valid_pincode(self.value)


@dataclass(frozen=True)
class PincodeChanged:
    new_value: str
    old_value: str
    key: str = PINCODE_CACHE_KEY


class ChannelUnavailable(Exception):
    pass


class PincodeBus:
    """Publish/subscribe channel for ``PincodeChanged`` events."""

    def __init__(self, name: str = "storage"):
        self.name = name
        self.closed = False
        self._subscribers: List[Callable[[PincodeChanged], None]] = []

    def subscribe(self, callback: Callable[[PincodeChanged], None]):
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, event: PincodeChanged) -> None:
        if self.closed:
            raise ChannelUnavailable(f"channel {self.name!r} is closed")
        for callback in list(self._subscribers):
            callback(event)

    def close(self) -> None:
        self.closed = True


class PincodeResolver:
    def __init__(self, durable, cache, bus: Optional[PincodeBus] = None,
                 fallback_bus: Optional[PincodeBus] = None):
        self.durable = durable
        self.cache = cache
        self.bus = bus
        self.fallback_bus = fallback_bus
        self.value = ""
        self._unsubscribe = []
        for channel in (bus, fallback_bus):
            if channel is not None:
                self._unsubscribe.append(channel.subscribe(self._on_change))

    def resolve(self) -> PincodeSelection:
        cookie_value = self.durable.get(PINCODE_COOKIE)
        if cookie_value:
            self.value = cookie_value
            return PincodeSelection(cookie_value, "cookie")

        cached = self.cache.get(PINCODE_CACHE_KEY)
        if cached:
            # write-through so both stores converge
            self.durable.set(PINCODE_COOKIE, cached, max_age=COOKIE_MAX_AGE, path="/")
            self.value = cached
            return PincodeSelection(cached, "cache")

        self.value = ""
        return PincodeSelection()

    def update(self, new_value: str) -> None:
        if new_value == self.value:
            return

        old_value = self.value
        previous_cached = self.cache.get(PINCODE_CACHE_KEY)
        self.cache.set(PINCODE_CACHE_KEY, new_value)
        try:
            self.durable.set(PINCODE_COOKIE, new_value, max_age=COOKIE_MAX_AGE, path="/")
        except Exception:
            if previous_cached is None:
                self.cache.delete(PINCODE_CACHE_KEY)
            else:
                self.cache.set(PINCODE_CACHE_KEY, previous_cached)
            raise
        self.value = new_value

        self._broadcast(PincodeChanged(new_value=new_value, old_value=old_value))

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    def _broadcast(self, event: PincodeChanged) -> None:
        if self.bus is None and self.fallback_bus is None:
            return
        if self.bus is not None:
            try:
                self.bus.publish(event)
                return
            except ChannelUnavailable:
                logger.warning("Pincode broadcast channel unavailable, using fallback")
        if self.fallback_bus is None:
            raise ChannelUnavailable("no channel available to broadcast pincode change")
        self.fallback_bus.publish(event)

    def _on_change(self, event: PincodeChanged) -> None:
        if event.key == PINCODE_CACHE_KEY and event.new_value != self.value:
            self.value = event.new_value


class CookieStore:
    """Request cookies in, response cookies out."""

    def __init__(self, request, response):
        self.request = request
        self.response = response

    def get(self, key):
        return self.request.cookies.get(key)

    def set(self, key, value, max_age=None, path="/"):
        self.response.set_cookie(key, value, max_age=max_age, path=path, samesite="lax")

    def delete(self, key):
        self.response.delete_cookie(key, path="/")


class HeaderStore:
    """The client's local cache, mirrored through the ``X-Pincode`` header."""

    header = "X-Pincode"

    def __init__(self, request, response):
        self.request = request
        self.response = response

    def get(self, key):
        return self.request.headers.get(self.header)

    def set(self, key, value, **options):
        self.response.headers[self.header] = value

    def delete(self, key):
        if self.header in self.response.headers:
            del self.response.headers[self.header]
