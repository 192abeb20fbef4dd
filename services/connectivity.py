"""Connectivity state and the sources that drive it."""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

import httpx

from core.settings import CONNECTIVITY, SYNC


logger = logging.getLogger("learnrelax.connectivity")

ConnectivityListener = Callable[[bool], None]


class ConnectivityRegistration:
    """Handle returned by :meth:`ConnectivityMonitor.register`; ``close()`` releases it."""

    def __init__(self, monitor: "ConnectivityMonitor", callback: ConnectivityListener) -> None:
        self._monitor = monitor
        self._callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def close(self) -> None:
        if not self._active:
            return
        self._active = False
        self._monitor._remove(self._callback)

    def __enter__(self) -> "ConnectivityRegistration":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ConnectivityMonitor:
    """Holds the online/offline state reported by the host environment.

    Listeners are only called on actual transitions, with the new state.
    """

    def __init__(self, initial_online: bool = True) -> None:
        self._online = bool(initial_online)
        self._lock = threading.Lock()
        self._listeners: List[ConnectivityListener] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def register(self, callback: ConnectivityListener) -> ConnectivityRegistration:
        with self._lock:
            self._listeners.append(callback)
        return ConnectivityRegistration(self, callback)

    def _remove(self, callback: ConnectivityListener) -> None:
        with self._lock:
            try:
                self._listeners.remove(callback)
            except ValueError:
                pass

    def set_online(self, online: bool) -> bool:
        """Record the current state; return ``True`` if it changed."""

        online = bool(online)
        with self._lock:
            if online == self._online:
                return False
            self._online = online
            listeners = list(self._listeners)

        logger.info("Connectivity changed: %s", "online" if online else "offline")
        for listener in listeners:
            try:
                listener(online)
            except Exception:
                logger.exception("Connectivity listener %r failed", listener)
        return True

    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)


class HttpProbe:
    """Polls the API host and feeds the result into a monitor.

    Any HTTP answer counts as online; only transport errors mean offline.
    """

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        url: Optional[str] = None,
        *,
        interval: Optional[float] = None,
        timeout: Optional[float] = None,
        http: Optional[httpx.Client] = None,
    ) -> None:
        self.monitor = monitor
        self.url = url or SYNC.api_base_url
        self.interval = interval if interval is not None else CONNECTIVITY.probe_interval_sec
        self._owns_http = http is None
        self.http = http or httpx.Client(
            timeout=timeout if timeout is not None else CONNECTIVITY.probe_timeout_sec
        )
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def check(self) -> bool:
        try:
            self.http.head(self.url)
        except httpx.HTTPError as exc:
            logger.debug("Connectivity probe to %s failed: %s", self.url, exc)
            online = False
        else:
            online = True
        self.monitor.set_online(online)
        return online

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="connectivity-probe", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=self.interval + 1)
            self._thread = None
        if self._owns_http:
            self.http.close()

    def _run(self) -> None:
        while not self._stop.is_set():
            self.check()
            self._stop.wait(self.interval)


__all__ = [
    "ConnectivityListener",
    "ConnectivityMonitor",
    "ConnectivityRegistration",
    "HttpProbe",
]
