from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Union

from .models import (
    SUBJECT_COLUMN,
    Period,
    WhitelistRecord,
    format_access_flag,
    format_period,
    normalize_identity,
    parse_access_flag,
    parse_period,
)

logger = logging.getLogger(__name__)

DELIMITER = ","
DEFAULT_MONTHS = 12
DEFAULT_EXAMPLE_TRIAL_MONTHS = 3
EXAMPLE_PLAYERS = ("ExamplePlayer1", "ExamplePlayer2")


@dataclass
class LoadResult:
    """Outcome of parsing one whitelist document.

    ``document`` is only set when the store was bootstrapped, and holds the
    generated default document the caller should persist.
    """

    success_count: int = 0
    failure_count: int = 0
    warnings: List[str] = field(default_factory=list)
    bootstrapped: bool = False
    document: Optional[str] = None

    def warn(self, message: str) -> None:
        self.warnings.append(message)
        logger.warning(message)


def _decode(raw: Union[str, bytes, None]) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    return raw.lstrip("\ufeff")


class WhitelistStore:
    """In-memory whitelist keyed by lower-cased player name."""

    def __init__(self) -> None:
        self._records: Dict[str, WhitelistRecord] = {}

    def load_from_table(self, raw: Union[str, bytes, None], *, now: Period) -> LoadResult:
        """Replace the store contents with the records parsed from ``raw``.

        A missing or malformed header never raises: the store is bootstrapped
        with the default document instead. Bad rows are counted and skipped.
        """
        self._records = {}
        result = LoadResult()
        lines = _decode(raw).splitlines()

        if not lines or not lines[0].strip():
            result.warn("Whitelist document is empty, creating default structure")
            return self._bootstrap_into(result, now)

        headers = lines[0].strip().split(DELIMITER)
        if len(headers) < 2 or headers[0].strip().lower() != SUBJECT_COLUMN.lower():
            result.warn(f"Invalid whitelist header. Expected '{SUBJECT_COLUMN}' as first column")
            return self._bootstrap_into(result, now)

        columns: List[Optional[Period]] = []
        for header in headers[1:]:
            period = parse_period(header)
            if period is None:
                # placeholder keeps later columns aligned
                result.warn(f"Could not parse month column: {header!r}")
            columns.append(period)

        logger.info("Found month columns", extra={"column_count": len(columns)})

        for line_number, line in enumerate(lines[1:], start=2):
            line = line.strip()
            if not line:
                continue

            values = line.split(DELIMITER)
            player_name = values[0].strip()
            if not player_name:
                result.failure_count += 1
                result.warn(f"Line {line_number} has empty player name")
                continue

            record = WhitelistRecord(player_name)
            for period, value in zip(columns, values[1:]):
                if period is None:
                    continue
                record.set_access(period, parse_access_flag(value))

            self._records[record.identity] = record
            result.success_count += 1

        logger.info(
            "Loaded whitelist document",
            extra={"success_count": result.success_count, "failure_count": result.failure_count},
        )
        return result

    def bootstrap_default(self, now: Period) -> str:
        """Reset to the twelve-month example whitelist and return it as a document."""
        months = [now.plus_months(offset) for offset in range(DEFAULT_MONTHS)]
        trial_player, full_player = EXAMPLE_PLAYERS

        trial = WhitelistRecord(trial_player)
        full = WhitelistRecord(full_player)
        for index, month in enumerate(months):
            trial.set_access(month, index < DEFAULT_EXAMPLE_TRIAL_MONTHS)
            full.set_access(month, True)

        self._records = {trial.identity: trial, full.identity: full}
        return self.serialize_to_table()

    def _bootstrap_into(self, result: LoadResult, now: Period) -> LoadResult:
        result.document = self.bootstrap_default(now)
        result.bootstrapped = True
        result.success_count = len(self._records)
        logger.info("Bootstrapped default whitelist", extra={"first_month": format_period(now)})
        return result

    def all_periods(self) -> List[Period]:
        periods: Set[Period] = set()
        for record in self._records.values():
            periods.update(record.periods())
        return sorted(periods)

    def serialize_to_table(self) -> str:
        periods = self.all_periods()
        lines = [DELIMITER.join([SUBJECT_COLUMN] + [format_period(p) for p in periods])]
        for record in self._records.values():
            flags = [format_access_flag(record.has_access(p)) for p in periods]
            lines.append(DELIMITER.join([record.player_name] + flags))
        return "\n".join(lines) + "\n"

    def lookup(self, player_name: str) -> Optional[WhitelistRecord]:
        return self._records.get(normalize_identity(player_name))

    def contains(self, player_name: str) -> bool:
        return normalize_identity(player_name) in self._records

    def is_whitelisted(self, player_name: str, now: Period) -> bool:
        record = self.lookup(player_name)
        return record is not None and record.has_current_access(now)

    def records(self) -> List[WhitelistRecord]:
        return list(self._records.values())

    def resolve_currently_authorized(self, now: Period) -> Set[str]:
        return {key for key, record in self._records.items() if record.has_current_access(now)}

    def authorized_records(self, now: Period) -> List[WhitelistRecord]:
        return [record for record in self._records.values() if record.has_current_access(now)]

    @property
    def entry_count(self) -> int:
        return len(self._records)

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)
