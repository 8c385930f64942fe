"""robots.txt access policy cache with TTL expiry and fail-open strategy."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib import robotparser
from urllib.parse import quote, unquote

from core.config import ROBOTS_MAX_BYTES
from core.errors import GatewayError, PolicyParseError, TransportError
from core.models import FetchLog, FetchPurpose, TargetReference
from core.pipeline import AccessPolicy, PolicyParser, Transport
from core.structured_logging import EventLogger, null_event_logger
from fetcher.body import read_bounded
from fetcher.gemini import STATUS_NOT_FOUND, STATUS_SUCCESS
from fetcher.logging import fetch_log_to_dict


ROBOTS_PATH = "/robots.txt"


class RobotsPolicy(AccessPolicy):
    """AccessPolicy backed by the standard library robots.txt parser."""

    def __init__(self, parser: robotparser.RobotFileParser) -> None:
        self._parser = parser

    def allowed(self, path: str, agent: str) -> bool:
        """Test ``path`` against the group that names ``agent`` exactly, if any."""
        wanted = agent.lower()
        normalized = quote(unquote(path)) or "/"
        for entry in self._parser.entries:
            if any(useragent.lower() == wanted for useragent in entry.useragents):
                return entry.allowance(normalized)
        return True


class RobotsPolicyParser(PolicyParser):
    """Parse robots.txt bytes; non-UTF-8 or binary content is a parse failure."""

    def parse(self, data: bytes) -> RobotsPolicy:
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise PolicyParseError("robots.txt is not valid UTF-8") from exc
        if "\x00" in text:
            raise PolicyParseError("robots.txt contains binary data")

        parser = robotparser.RobotFileParser()
        parser.parse(text.splitlines())
        return RobotsPolicy(parser)


class TTLCache:
    """Thread-safe in-memory cache with a default expiry and periodic purge."""

    def __init__(
        self,
        ttl_seconds: float,
        purge_interval_seconds: float,
        clock_fn: Callable[[], float] | None = None,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        if purge_interval_seconds <= 0:
            raise ValueError("purge_interval_seconds must be > 0")

        self.ttl_seconds = ttl_seconds
        self.purge_interval_seconds = purge_interval_seconds
        self._clock = clock_fn or time.monotonic
        self._lock = threading.Lock()
        self._items: dict[str, tuple[Any, float]] = {}
        self._next_purge = self._clock() + purge_interval_seconds

    def get(self, key: str) -> Any | None:
        with self._lock:
            now = self._clock()
            self._maybe_purge(now)
            item = self._items.get(key)
            if item is None:
                return None
            value, expires_at = item
            if expires_at <= now:
                del self._items[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        with self._lock:
            now = self._clock()
            self._maybe_purge(now)
            self._items[key] = (value, now + (ttl_seconds or self.ttl_seconds))

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def _maybe_purge(self, now: float) -> None:
        if now < self._next_purge:
            return
        expired = [key for key, (_, expires_at) in self._items.items() if expires_at <= now]
        for key in expired:
            del self._items[key]
        self._next_purge = now + self.purge_interval_seconds


@dataclass(slots=True)
class RobotsCacheEntry:
    """Cached robots policy for a host:port."""

    mode: str
    policy: AccessPolicy | None
    warning: str | None = None


@dataclass(slots=True)
class PolicyDecision:
    """Decision payload for one robots check."""

    allowed: bool
    mode: str
    robots_address: str
    cache_hit: bool
    warning: str | None


class AccessPolicyCache:
    """
    Decide whether the gateway may fetch a path, caching robots.txt per host.

    Availability wins over strictness: a missing, unreachable, oversized or
    unparsable robots.txt allows everything.
    """

    def __init__(
        self,
        transport: Transport,
        parser: PolicyParser | None = None,
        agent: str = "webproxy",
        ttl_seconds: float = 86_400.0,
        purge_interval_seconds: float = 43_200.0,
        max_bytes: int = ROBOTS_MAX_BYTES,
        clock_fn: Callable[[], float] | None = None,
        event_logger: EventLogger | None = None,
    ) -> None:
        """Initialize the cache, the policy source, and the agent identity."""
        self.transport = transport
        self.parser = parser or RobotsPolicyParser()
        self.agent = agent
        self.max_bytes = max_bytes
        self._clock = clock_fn or time.monotonic
        self._cache = TTLCache(ttl_seconds, purge_interval_seconds, clock_fn=self._clock)
        self._event_logger = event_logger or null_event_logger

    def clear_cache(self) -> None:
        """Clear all cached robots policies."""
        self._cache.clear()

    def allowed(self, target: TargetReference, request_id: str | None = None) -> bool:
        return self.evaluate(target, request_id=request_id).allowed

    def evaluate(self, target: TargetReference, request_id: str | None = None) -> PolicyDecision:
        """Return a full robots decision for ``target``."""
        key = target.hostport
        robots_address = target.with_path(ROBOTS_PATH).address

        entry = self._cache.get(key)
        cache_hit = entry is not None
        if cache_hit:
            self._emit("policy_cache_hit", request_id, level="debug", host=key)
        else:
            self._emit("policy_cache_miss", request_id, level="debug", host=key)
            entry = self._fetch_entry(target, request_id)
            if entry.mode == "parse_failed":
                self._cache.delete(key)
            else:
                self._cache.set(key, entry)

        allowed = True
        if entry.policy is not None:
            allowed = entry.policy.allowed(target.path, self.agent)

        return PolicyDecision(
            allowed=allowed,
            mode=entry.mode,
            robots_address=robots_address,
            cache_hit=cache_hit,
            warning=entry.warning,
        )

    def _fetch_entry(self, target: TargetReference, request_id: str | None) -> RobotsCacheEntry:
        robots = target.with_path(ROBOTS_PATH)
        data, mode, warning = self._download(robots, request_id)
        if warning:
            self._emit("policy_fetch_failed", request_id, level="debug", host=robots.hostport, message=warning)

        try:
            policy = self.parser.parse(data)
        except PolicyParseError as exc:
            self._emit(
                "policy_parse_failed",
                request_id,
                level="warning",
                host=robots.hostport,
                error=str(exc),
            )
            return RobotsCacheEntry(mode="parse_failed", policy=None, warning=str(exc))

        return RobotsCacheEntry(mode=mode, policy=policy, warning=warning)

    def _download(self, robots: TargetReference, request_id: str | None) -> tuple[bytes, str, str | None]:
        """Return (bytes, mode, warning); every failure yields empty bytes."""
        start = self._clock()
        log = FetchLog(address=robots.address, purpose=FetchPurpose.POLICY, request_id=request_id)

        try:
            # Policy fetches never depend on the caller's TLS settings.
            response = self.transport.fetch(robots.address, insecure=True)
        except TransportError as exc:
            self._log_fetch(log, start)
            return b"", "fetch_failed", f"robots.txt fetch failed for {robots.address}: {exc}; allowing"

        with response:
            log.status = response.status
            log.meta = response.meta
            if response.status != STATUS_SUCCESS:
                self._log_fetch(log, start)
                mode = "not_found" if response.status == STATUS_NOT_FOUND else "unavailable"
                return b"", mode, f"robots.txt returned {response.status} for {robots.address}; allowing"
            try:
                data = read_bounded(response.body, self.max_bytes)
            except GatewayError as exc:
                log.error_code = exc.code
                self._log_fetch(log, start)
                return b"", "fetch_failed", f"robots.txt unusable for {robots.address}: {exc.message}; allowing"

        log.bytes_received = len(data)
        self._log_fetch(log, start)
        return data, "parsed", None

    def _log_fetch(self, log: FetchLog, start: float) -> None:
        log.latency_ms = int((self._clock() - start) * 1000)
        payload = fetch_log_to_dict(log)
        payload.pop("request_id", None)
        self._emit("gemini_fetch", log.request_id, level="debug", **payload)

    def _emit(self, event_type: str, request_id: str | None, *, level: str, **payload: object) -> None:
        self._event_logger(event_type, {"request_id": request_id, "level": level, **payload})
