from __future__ import annotations

from typing import TYPE_CHECKING, Any, Tuple

from .errors import InvalidFieldError
from .keys import SEP, EntryKind, canonical_date, validate_owner, validate_type_name

if TYPE_CHECKING:
    from .models import WorkoutLogEntry


def secondary_sort_key(type_name: str, day: Any) -> str:
    # Date first so the secondary index orders a partition by calendar day.
    name = validate_type_name(type_name)
    return f"{EntryKind.WORKOUT.value}{SEP}{canonical_date(day)}{SEP}{name}"


def project(entry: "WorkoutLogEntry") -> Tuple[str, str]:
    """
    Derive the secondary index key of a log entry.

    Pure; the result is attached as the ``gsi1sk`` attribute of the same item
    the primary key addresses; the store maintains the index from it.
    """
    return validate_owner(entry.owner), secondary_sort_key(entry.type_name, entry.date)


def date_prefix(day: Any) -> str:
    return f"{EntryKind.WORKOUT.value}{SEP}{canonical_date(day)}{SEP}"


def date_range(start: Any, end: Any) -> Tuple[str, str]:
    """Inclusive secondary-key bounds covering every entry dated start..end."""
    lo, hi = canonical_date(start), canonical_date(end)
    if lo > hi:
        raise InvalidFieldError("date", f"range start {lo} is after end {hi}")
    # chr(ord(SEP) + 1) sorts after every "<date>#<type>" suffix of the end day.
    return (
        f"{EntryKind.WORKOUT.value}{SEP}{lo}{SEP}",
        f"{EntryKind.WORKOUT.value}{SEP}{hi}{chr(ord(SEP) + 1)}",
    )
