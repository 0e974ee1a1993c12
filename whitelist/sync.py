"""
Whitelist sync orchestrator.

FLOW (one cycle):
1. FETCHING: download the remote document into the local cache
   (any failure falls back to the cached copy)
2. PARSING: build a fresh WhitelistStore from the cached document
   (malformed documents bootstrap the default and never fail the cycle)
3. RECONCILING: apply the grant/revoke delta to the enforcement target
   (the only step that can mark the cycle FAILED)

REMOTE ACCESS:
- A fetcher factory is retried on every cycle until it connects, and rebuilt
  on each explicit reload so config changes reach the remote lookup

CONCURRENCY:
- Cycles are serialized by a lock; a reload requested while a cycle is in
  flight waits for it and then runs its own cycle
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import date, datetime, timezone
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .cache import DocumentCache
from .config import SyncConfig
from .drive import Fetcher
from .models import Period, format_period
from .reconciler import EnforcementTarget, ReconcileResult, Reconciler
from .store import LoadResult, WhitelistStore

logger = logging.getLogger(__name__)

STATUS_PREFIX = "AutoWhitelist"


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PARSING = "parsing"
    RECONCILING = "reconciling"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SyncResult:
    """Outcome of one sync cycle, reported to the trigger."""

    ok: bool
    state: SyncState
    trigger: str
    period: str
    entry_count: int = 0
    granted: int = 0
    revoked: int = 0
    evicted: int = 0
    fetched: bool = False
    bootstrapped: bool = False
    row_failures: int = 0
    error: Optional[str] = None
    message: str = ""
    started_at: str = ""
    completed_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "state": self.state.value,
            "trigger": self.trigger,
            "period": self.period,
            "entry_count": self.entry_count,
            "granted": self.granted,
            "revoked": self.revoked,
            "evicted": self.evicted,
            "fetched": self.fetched,
            "bootstrapped": self.bootstrapped,
            "row_failures": self.row_failures,
            "error": self.error,
        }


class SyncOrchestrator:
    """Runs fetch -> parse -> reconcile cycles against one enforcement target."""

    def __init__(
        self,
        config: SyncConfig,
        target: EnforcementTarget,
        *,
        fetcher: Optional[Fetcher] = None,
        cache: Optional[DocumentCache] = None,
        reconciler: Optional[Reconciler] = None,
        clock: Callable[[], date] = date.today,
        config_loader: Optional[Callable[[], SyncConfig]] = None,
        fetcher_factory: Optional[Callable[[SyncConfig], Fetcher]] = None,
    ) -> None:
        self.config = config
        self.target = target
        self.fetcher = fetcher
        self.cache = cache or DocumentCache(config.local_csv_path)
        self.reconciler = reconciler or Reconciler()
        self._clock = clock
        self._config_loader = config_loader
        self._fetcher_factory = fetcher_factory
        self._lock = threading.Lock()
        self.store = WhitelistStore()
        self.state = SyncState.IDLE
        self.last_result: Optional[SyncResult] = None
        self.history: List[SyncState] = []

    def _enter(self, state: SyncState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug("Whitelist sync state", extra={"state": state.value})

    def run(self, trigger: str = "startup") -> SyncResult:
        with self._lock:
            return self._run_locked(trigger)

    def _run_locked(self, trigger: str) -> SyncResult:
        self.history = []
        if self._config_loader is not None and trigger == "reload":
            self._reload_config()
        if self._fetcher_factory is not None and trigger == "reload":
            self._drop_fetcher()

        now = Period.current(self._clock())
        result = SyncResult(
            ok=False,
            state=SyncState.IDLE,
            trigger=trigger,
            period=format_period(now),
            started_at=datetime.now(timezone.utc).isoformat(),
        )
        logger.info("Starting whitelist sync", extra={"trigger": trigger, "period": result.period})

        self._enter(SyncState.FETCHING)
        result.fetched = self._fetch()

        self._enter(SyncState.PARSING)
        load = self._parse(now)
        result.entry_count = self.store.entry_count
        result.bootstrapped = load.bootstrapped
        result.row_failures = load.failure_count

        self._enter(SyncState.RECONCILING)
        try:
            applied = self.reconciler.reconcile(self.store, self.target, now)
        except Exception as exc:
            partial = getattr(exc, "partial", None) or ReconcileResult()
            self._record_counts(result, partial)
            self._enter(SyncState.FAILED)
            result.state = SyncState.FAILED
            result.error = str(exc)
            result.message = f"Failed to reload whitelist: {exc}"
            logger.error("Whitelist sync failed", extra={"trigger": trigger, "error": str(exc)})
        else:
            self._record_counts(result, applied)
            self._enter(SyncState.DONE)
            result.ok = True
            result.state = SyncState.DONE
            result.message = (
                f"Whitelist reload complete. Entries: {result.entry_count} "
                f"(granted {result.granted}, revoked {result.revoked})"
            )
            logger.info(result.message, extra=result.to_dict())

        result.completed_at = datetime.now(timezone.utc).isoformat()
        self.last_result = result
        self.state = SyncState.IDLE
        return result

    def reload(self) -> Tuple[bool, str]:
        """Explicit reload trigger. Returns (ok, human-readable status line)."""
        result = self.run(trigger="reload")
        if result.ok:
            return True, f"{STATUS_PREFIX}: reload successful. Entries: {result.entry_count}"
        return False, f"{STATUS_PREFIX}: reload failed. Check console. ({result.error})"

    def _reload_config(self) -> None:
        try:
            self.config = self._config_loader()
        except Exception as exc:
            logger.warning("Config reload failed, keeping previous config", extra={"error": str(exc)})
            return
        if self.cache.path != self.config.local_csv_path:
            self.cache = DocumentCache(self.config.local_csv_path)

    def __enter__(self) -> "SyncOrchestrator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Release the fetcher and the enforcement target connections."""
        self._drop_fetcher()
        close_target = getattr(self.target, "close", None)
        if close_target is not None:
            close_target()

    def _drop_fetcher(self) -> None:
        close_fetcher = getattr(self.fetcher, "close", None)
        if close_fetcher is not None:
            close_fetcher()
        self.fetcher = None

    def _connect_fetcher(self) -> None:
        try:
            self.fetcher = self._fetcher_factory(self.config)
        except Exception as exc:
            logger.error(
                "Failed to initialize remote fetcher",
                extra={"error": str(exc), "error_code": getattr(exc, "error_code", None)},
            )

    def _fetch(self) -> bool:
        if self.fetcher is None and self._fetcher_factory is not None:
            self._connect_fetcher()
        if self.fetcher is None:
            logger.warning("No remote fetcher configured, using local cached copy if available")
            return False
        try:
            data = self.fetcher.fetch(self.config.locator)
            self.cache.write(data)
        except Exception as exc:
            logger.warning(
                "Failed to download whitelist, using local cached copy if available",
                extra={"error": str(exc), "error_code": getattr(exc, "error_code", None)},
            )
            return False
        return True

    def _parse(self, now: Period) -> LoadResult:
        store = WhitelistStore()
        load = store.load_from_table(self.cache.read(), now=now)
        if load.bootstrapped and load.document is not None:
            try:
                self.cache.write(load.document)
            except OSError as exc:
                logger.error("Failed to write default whitelist", extra={"error": str(exc)})
        self.store = store
        logger.info(
            "WhitelistStore loaded",
            extra={"entry_count": store.entry_count, "row_failures": load.failure_count},
        )
        return load

    @staticmethod
    def _record_counts(result: SyncResult, applied: ReconcileResult) -> None:
        result.granted = len(applied.granted)
        result.revoked = len(applied.revoked)
        result.evicted = len(applied.evicted)
