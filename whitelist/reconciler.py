from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Protocol, runtime_checkable

from .errors import ReconciliationError
from .models import Period, normalize_identity
from .store import WhitelistStore

logger = logging.getLogger(__name__)

KICK_MESSAGE = "You have been removed from the whitelist."


@runtime_checkable
class EnforcementTarget(Protocol):
    """The server-side allow-list and session control the reconciler drives."""

    def list_allowed(self) -> Iterable[str]: ...

    def set_allowed(self, player_name: str, allowed: bool) -> None: ...

    def is_connected(self, player_name: str) -> bool: ...

    def terminate_session(self, player_name: str, reason: str) -> None: ...


@dataclass(frozen=True)
class ReconcilePlan:
    grants: List[str] = field(default_factory=list)
    revocations: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.grants and not self.revocations


@dataclass
class ReconcileResult:
    granted: List[str] = field(default_factory=list)
    revoked: List[str] = field(default_factory=list)
    evicted: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "granted": len(self.granted),
            "revoked": len(self.revoked),
            "evicted": len(self.evicted),
        }


class Reconciler:
    """Computes and applies the grant/revoke delta for the current month.

    Reads the store and the target; never mutates the store.
    """

    def __init__(self, kick_message: str = KICK_MESSAGE) -> None:
        self.kick_message = kick_message

    def plan(self, store: WhitelistStore, allowed: Iterable[str], now: Period) -> ReconcilePlan:
        allowed_names = list(dict.fromkeys(allowed))
        allowed_keys = {normalize_identity(name) for name in allowed_names}
        authorized_keys = store.resolve_currently_authorized(now)

        grants = [
            record.player_name
            for record in store.authorized_records(now)
            if record.identity not in allowed_keys
        ]
        revocations = [
            name for name in allowed_names if normalize_identity(name) not in authorized_keys
        ]
        return ReconcilePlan(
            grants=sorted(grants, key=normalize_identity),
            revocations=sorted(revocations, key=normalize_identity),
        )

    def reconcile(self, store: WhitelistStore, target: EnforcementTarget, now: Period) -> ReconcileResult:
        result = ReconcileResult()
        try:
            plan = self.plan(store, target.list_allowed(), now)

            for player_name in plan.grants:
                target.set_allowed(player_name, True)
                result.granted.append(player_name)
                logger.info("Added to server whitelist", extra={"player_name": player_name})

            for player_name in plan.revocations:
                # kick before clearing the flag so no session outlives the revoke
                if target.is_connected(player_name):
                    target.terminate_session(player_name, self.kick_message)
                    result.evicted.append(player_name)
                    logger.info("Kicked player removed from whitelist", extra={"player_name": player_name})
                target.set_allowed(player_name, False)
                result.revoked.append(player_name)
                logger.info("Removed from server whitelist", extra={"player_name": player_name})
        except Exception as exc:
            logger.error(
                "Whitelist reconciliation failed",
                extra={"error": str(exc), **result.to_dict()},
            )
            raise ReconciliationError(f"Failed to apply whitelist: {exc}", partial=result) from exc

        return result
