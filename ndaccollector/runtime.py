"""Shared state of a running collector."""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import requests

from .client import create_http_client
from .models import APIConf, CollectorConfig, User

NHG_PATH_PARAM = "{nhg_id}"
_TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


class _NullWriter:
    """Writer that discards everything."""

    def write_response(self, user: User, api: APIConf, data: Any, nhg_id: str, txn_id: int) -> None:
        return None

    def store_last_received_data_time(
        self, user: User, data: Any, api: APIConf, nhg_id: str, txn_id: int
    ) -> None:
        return None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Collector:
    """Configuration, HTTP session, collaborators and bookkeeping shared by all API calls.

    ``writer`` provides ``write_response(user, api, data, nhg_id, txn_id)`` and
    ``store_last_received_data_time(user, data, api, nhg_id, txn_id)``.
    ``interval_provider(user, api, nhg_id)`` returns the (start, end) timestamps
    to query. ``notifier(txn_id, data, metric_type, alarm_type)`` is told about
    received alarm data, if given.
    """

    def __init__(
        self,
        config: CollectorConfig,
        session: requests.Session | None = None,
        writer: Any = None,
        interval_provider: Callable[[User, APIConf, str], tuple[str, str]] | None = None,
        clock: Callable[[], datetime] | None = None,
        notifier: Callable[[int, Any, str, str], None] | None = None,
    ) -> None:
        self.config = config
        self.session = session if session is not None else create_http_client("", False)
        self.writer = writer if writer is not None else _NullWriter()
        self.interval_provider = interval_provider or self._last_interval
        self.notifier = notifier
        self._clock = clock or _utc_now
        self._txn_id = 1000
        self._txn_lock = threading.Lock()
        self._active: set[str] = set()
        self._active_lock = threading.Lock()

    def next_txn_id(self) -> int:
        """Return a fresh transaction id, used to tie log lines together."""
        with self._txn_lock:
            self._txn_id += 1
            return self._txn_id

    def url_for(self, api: APIConf, nhg_id: str | None = None) -> str:
        """Full URL of ``api``; ``{nhg_id}`` is filled in when ``nhg_id`` is given."""
        url = self.config.base_url + api.api
        if nhg_id is not None:
            url = url.replace(NHG_PATH_PARAM, nhg_id)
        return url

    def claim(self, key: str) -> bool:
        """Mark ``key`` as running; False if it already was."""
        with self._active_lock:
            if key in self._active:
                return False
            self._active.add(key)
            return True

    def release(self, key: str) -> None:
        """Mark ``key`` as no longer running."""
        with self._active_lock:
            self._active.discard(key)

    def now(self) -> datetime:
        """Current time from the collector's clock."""
        return self._clock()

    def _last_interval(self, user: User, api: APIConf, nhg_id: str) -> tuple[str, str]:
        end = self.now().astimezone(timezone.utc)
        start = end - timedelta(minutes=api.interval)
        return start.strftime(_TIME_FORMAT), end.strftime(_TIME_FORMAT)