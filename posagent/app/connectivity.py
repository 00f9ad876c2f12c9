import asyncio
from dataclasses import asdict, dataclass
from typing import Callable, List, Optional

from .errors import NetworkError, RemoteRejected
from .logs import json_log


@dataclass(frozen=True)
class ConnectivitySnapshot:
    is_online: bool
    sync_in_progress: bool

    def to_dict(self) -> dict:
        return asdict(self)


class ConnectivityMonitor:
    """
    Single source of truth for "are we online" and "is a drain running".

    Readers poll `get_snapshot()`; nothing is pushed to them. `set_online` is the event
    sink for transitions (fed by `probe()`); listeners registered with `on_online` run
    only on an offline -> online edge.
    """

    def __init__(self, api=None, initially_online: bool = False, health_timeout: float = 0.8):
        self.api = api
        self.health_timeout = health_timeout
        self._is_online = bool(initially_online)
        self._sync_in_progress = False
        self._listeners: List[Callable[[], None]] = []
        self.last_probe_error: Optional[str] = None
        self.last_latency_ms: Optional[int] = None

    def get_snapshot(self) -> ConnectivitySnapshot:
        return ConnectivitySnapshot(is_online=self._is_online, sync_in_progress=self._sync_in_progress)

    @property
    def is_online(self) -> bool:
        return self._is_online

    @property
    def sync_in_progress(self) -> bool:
        return self._sync_in_progress

    def on_online(self, fn: Callable[[], None]) -> None:
        self._listeners.append(fn)

    def set_online(self, online: bool) -> None:
        was = self._is_online
        self._is_online = bool(online)
        if was == self._is_online:
            return
        json_log("info", "connectivity.changed", is_online=self._is_online)
        if self._is_online:
            for fn in list(self._listeners):
                try:
                    fn()
                except Exception as ex:
                    json_log("error", "connectivity.listener_failed", error=str(ex))

    def try_begin_sync(self) -> bool:
        # Check-and-set with no suspension point in between: at most one drain at a time.
        if not self._is_online or self._sync_in_progress:
            return False
        self._sync_in_progress = True
        return True

    def end_sync(self) -> None:
        self._sync_in_progress = False

    async def probe(self) -> bool:
        if self.api is None:
            return self._is_online
        try:
            res = await asyncio.to_thread(self.api.health, self.health_timeout)
            ok = bool((res or {}).get("ok", True))
            self.last_latency_ms = (res or {}).get("latency_ms")
            self.last_probe_error = None
        except RemoteRejected as ex:
            # The server answered, so the network is up; only 5xx counts as unreachable.
            ok = ex.status_code < 500
            self.last_probe_error = str(ex)
        except NetworkError as ex:
            ok = False
            self.last_probe_error = str(ex)
        self.set_online(ok)
        return ok
