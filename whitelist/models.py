from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Optional

SUBJECT_COLUMN = "Playername"
TRUE_TOKEN = "True"
FALSE_TOKEN = "False"

_PERIOD_PATTERN = re.compile(r"([0-9]{2})\.([0-9]{2})\.([0-9]{4})")


def normalize_identity(name: str) -> str:
    """Map key used for every player-name lookup and set comparison."""
    return str(name).strip().lower()


@dataclass(frozen=True, order=True)
class Period:
    """A calendar month. Ordered by (year, month)."""

    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be in 1..12, got {self.month}")
        if not 1 <= self.year <= 9999:
            raise ValueError(f"year must be in 1..9999, got {self.year}")

    @classmethod
    def current(cls, today: Optional[date] = None) -> "Period":
        today = today or date.today()
        return cls(today.year, today.month)

    def plus_months(self, months: int) -> "Period":
        index = self.year * 12 + (self.month - 1) + months
        return Period(index // 12, index % 12 + 1)

    def __str__(self) -> str:
        return f"{self.month:02d}.{self.year:04d}"


def parse_period(text: Optional[str]) -> Optional[Period]:
    """Parse a ``DD.MM.YYYY`` column header. Returns None on any malformed input."""
    if not isinstance(text, str):
        return None
    match = _PERIOD_PATTERN.fullmatch(text.strip())
    if match is None:
        return None
    day, month, year = (int(part) for part in match.groups())
    try:
        date(year, month, day)
    except ValueError:
        return None
    return Period(year, month)


def format_period(period: Period) -> str:
    return f"01.{period.month:02d}.{period.year:04d}"


def parse_access_flag(text: Optional[str]) -> bool:
    # Anything other than an explicit "True" is unauthorized.
    return isinstance(text, str) and text.strip().lower() == TRUE_TOKEN.lower()


def format_access_flag(value: bool) -> str:
    return TRUE_TOKEN if value else FALSE_TOKEN


class WhitelistRecord:
    """One player's per-month access flags, in the order the months were first seen."""

    def __init__(self, player_name: str) -> None:
        self.player_name = player_name
        self._access: Dict[Period, bool] = {}

    @property
    def identity(self) -> str:
        return normalize_identity(self.player_name)

    def set_access(self, period: Period, allowed: bool) -> None:
        self._access[period] = bool(allowed)

    def has_access(self, period: Period) -> bool:
        return self._access.get(period, False)

    def has_current_access(self, now: Period) -> bool:
        return self.has_access(now)

    def periods(self) -> List[Period]:
        return list(self._access)

    def access_map(self) -> Dict[Period, bool]:
        return dict(self._access)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WhitelistRecord):
            return NotImplemented
        return self.identity == other.identity and self._access == other._access

    def __hash__(self) -> int:
        return hash(self.identity)

    def __repr__(self) -> str:
        months = {str(period): allowed for period, allowed in self._access.items()}
        return f"WhitelistRecord(player_name={self.player_name!r}, access={months!r})"
