"""
Whitelist sync job.

Runs one sync cycle at startup, then optionally polls on a fixed interval.
The ``reload`` command runs a single cycle and prints the status line.

Usage:
    python -m workers.whitelist_sync_job reload
    python -m workers.whitelist_sync_job serve --interval 600
    python -m workers.whitelist_sync_job reload --dry-run

Environment variables:
    AUTOWHITELIST_CONFIG_DIR: directory holding config.json, credentials.json and cache/
    RCON_HOST, RCON_PORT, RCON_PASSWORD: Minecraft server RCON endpoint
    GOOGLE_DRIVE_ACCESS_TOKEN: pre-issued token used when no service account file exists
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from typing import Callable, List, Optional

from whitelist.config import SyncConfig
from whitelist.drive import GoogleDriveFetcher
from whitelist.errors import WhitelistError
from whitelist.sync import STATUS_PREFIX, SyncOrchestrator, SyncResult, SyncState
from whitelist.targets import InMemoryEnforcementTarget, RconClient, RconEnforcementTarget

logger = logging.getLogger(__name__)


def connect_drive(config: SyncConfig) -> GoogleDriveFetcher:
    """Build a Drive fetcher and check it can list files before handing it out."""
    fetcher = GoogleDriveFetcher(config)
    try:
        fetcher.test_access()
    except Exception:
        fetcher.close()
        raise
    return fetcher


def build_orchestrator(config: SyncConfig, *, dry_run: bool = False) -> SyncOrchestrator:
    """Wire the Drive fetcher and the enforcement target for ``config``."""
    if dry_run:
        target = InMemoryEnforcementTarget()
    else:
        if not config.rcon_password:
            raise WhitelistError("RCON_PASSWORD is required unless --dry-run is given")
        target = RconEnforcementTarget(
            RconClient(
                config.rcon_host,
                config.rcon_port,
                config.rcon_password,
                timeout=config.fetch_timeout_seconds,
            )
        )

    return SyncOrchestrator(
        config,
        target,
        fetcher_factory=connect_drive,
        config_loader=SyncConfig.load,
    )


def run_whitelist_sync_cycle(orchestrator: SyncOrchestrator, trigger: str = "startup") -> SyncResult:
    """Run one cycle. Never raises; failures are reported on the result."""
    try:
        return orchestrator.run(trigger=trigger)
    except Exception as e:
        logger.error("Whitelist sync cycle crashed", extra={"trigger": trigger, "error": str(e)})
        return SyncResult(
            ok=False,
            state=SyncState.FAILED,
            trigger=trigger,
            period="",
            error=str(e),
            message=f"Failed to reload whitelist: {e}",
        )


def run_forever(
    orchestrator: SyncOrchestrator,
    interval_seconds: float,
    *,
    sleep: Callable[[float], None] = time.sleep,
    max_cycles: Optional[int] = None,
) -> int:
    """Poll loop. Returns the number of cycles run (only when ``max_cycles`` is set)."""
    cycles = 0
    while max_cycles is None or cycles < max_cycles:
        run_whitelist_sync_cycle(orchestrator, trigger="poll")
        cycles += 1
        if max_cycles is not None and cycles >= max_cycles:
            break
        sleep(interval_seconds)
    return cycles


def _parse_args(argv: Optional[List[str]]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sync the server whitelist from Google Drive")
    parser.add_argument("command", nargs="?", choices=["reload", "serve"], default="reload")
    parser.add_argument("--interval", type=float, default=None, help="poll interval in seconds (serve)")
    parser.add_argument("--dry-run", action="store_true", help="reconcile against an in-memory whitelist")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for running the sync from the command line."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    args = _parse_args(argv)

    try:
        config = SyncConfig.load()
        orchestrator = build_orchestrator(config, dry_run=args.dry_run)
    except Exception as e:
        logger.error("Whitelist sync setup failed", extra={"error": str(e)})
        return 1

    with orchestrator:
        if args.command == "reload":
            print(f"{STATUS_PREFIX}: reloading whitelist...")
            ok, status = orchestrator.reload()
            print(status)
            return 0 if ok else 1

        result = run_whitelist_sync_cycle(orchestrator, trigger="startup")
        interval = args.interval if args.interval is not None else config.poll_interval_seconds
        if interval <= 0:
            return 0 if result.ok else 1
        try:
            run_forever(orchestrator, interval)
        except KeyboardInterrupt:
            logger.info("Whitelist sync stopped")
        return 0


if __name__ == "__main__":
    sys.exit(main())
