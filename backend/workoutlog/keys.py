from __future__ import annotations

import re
from datetime import date, datetime
from enum import Enum
from typing import Any, NamedTuple, Optional, Tuple

from .errors import InvalidFieldError, MalformedKeyError

SEP = "#"

PK_ATTR = "pk"
SK_ATTR = "sk"
GSI1_SK_ATTR = "gsi1sk"

_DATE_RE = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")


class EntryKind(str, Enum):
    TYPE = "Type"
    WORKOUT = "Workout"

    @classmethod
    def from_any(cls, value: Any) -> Optional["EntryKind"]:
        if value is None:
            return None
        s = str(value).strip().lower()
        if not s:
            return None
        for kind in cls:
            if kind.value.lower() == s:
                return kind
        return None


# Number of discriminator fields after the kind tag.
_ARITY = {EntryKind.TYPE: 1, EntryKind.WORKOUT: 2}


class DecodedKey(NamedTuple):
    kind: EntryKind
    type_name: str
    date: Optional[str] = None


def validate_owner(owner: Any) -> str:
    # Partition keys are opaque: used verbatim, only emptiness is rejected.
    if not isinstance(owner, str) or not owner:
        raise InvalidFieldError("owner", "must be a non-empty string")
    return owner


def validate_type_name(type_name: Any) -> str:
    if not isinstance(type_name, str) or not type_name:
        raise InvalidFieldError("typeName", "must be a non-empty string")
    if SEP in type_name:
        raise InvalidFieldError("typeName", f"must not contain reserved separator {SEP!r}")
    return type_name


def canonical_date(value: Any) -> str:
    """
    Return the zero-padded YYYY-MM-DD form of a calendar date.

    Sort keys compare byte-wise, so only this form keeps range and prefix
    queries in calendar order. Unparseable input is rejected, never clamped.
    """
    if isinstance(value, datetime):
        raise InvalidFieldError("date", "must be a calendar date, not a timestamp")
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise InvalidFieldError("date", "must be a calendar date in YYYY-MM-DD form")
    try:
        date.fromisoformat(value)
    except ValueError:
        raise InvalidFieldError("date", f"{value!r} is not a valid calendar date") from None
    return value


def type_key(owner: str, type_name: str) -> Tuple[str, str]:
    return validate_owner(owner), f"{EntryKind.TYPE.value}{SEP}{validate_type_name(type_name)}"


def workout_key(owner: str, type_name: str, day: Any) -> Tuple[str, str]:
    # Type before date: per-type listings are a prefix, per-type date windows a range.
    name = validate_type_name(type_name)
    return validate_owner(owner), f"{EntryKind.WORKOUT.value}{SEP}{name}{SEP}{canonical_date(day)}"


def decode(sk: Any) -> DecodedKey:
    if not isinstance(sk, str):
        raise MalformedKeyError("sort key must be a string", key=repr(sk))
    tag, _, rest = sk.partition(SEP)
    parts = rest.split(SEP)
    try:
        if tag == EntryKind.TYPE.value and len(parts) == 1:
            return DecodedKey(EntryKind.TYPE, validate_type_name(parts[0]))
        if tag == EntryKind.WORKOUT.value and len(parts) == 2:
            return DecodedKey(EntryKind.WORKOUT, validate_type_name(parts[0]), canonical_date(parts[1]))
    except InvalidFieldError as e:
        raise MalformedKeyError(f"unrecognised sort key: {e.message}", key=sk) from e
    raise MalformedKeyError("unrecognised sort key shape", key=sk)


def decode_secondary(gsi1sk: Any) -> DecodedKey:
    """Decode the date-first ordering key, ``Workout#<date>#<type>``."""
    if not isinstance(gsi1sk, str):
        raise MalformedKeyError("secondary sort key must be a string", key=repr(gsi1sk))
    parts = gsi1sk.split(SEP)
    if len(parts) == 3 and parts[0] == EntryKind.WORKOUT.value:
        try:
            return DecodedKey(EntryKind.WORKOUT, validate_type_name(parts[2]), canonical_date(parts[1]))
        except InvalidFieldError as e:
            raise MalformedKeyError(f"unrecognised secondary key: {e.message}", key=gsi1sk) from e
    raise MalformedKeyError("unrecognised secondary key shape", key=gsi1sk)


def _kind(kind: Any) -> EntryKind:
    k = kind if isinstance(kind, EntryKind) else EntryKind.from_any(kind)
    if k is None:
        raise InvalidFieldError("kind", f"unknown entry kind {kind!r}")
    return k


def prefix_for(kind: Any, *parts: Any) -> str:
    """
    Build a "begins with" prefix for ``kind`` from leading discriminators.

    ``prefix_for(EntryKind.WORKOUT)`` is ``"Workout#"`` and
    ``prefix_for(EntryKind.WORKOUT, "Swimming")`` is ``"Workout#Swimming"``.
    Parts are validated like the fields they stand for (type name, then date).
    """
    k = _kind(kind)
    if len(parts) > _ARITY[k]:
        raise InvalidFieldError("prefix", f"{k.value} keys take at most {_ARITY[k]} discriminators")
    if not parts:
        return f"{k.value}{SEP}"
    fields = [validate_type_name(parts[0])]
    if len(parts) > 1:
        fields.append(canonical_date(parts[1]))
    return SEP.join([k.value, *fields])


def scan_prefix(kind: Any, *parts: Any) -> str:
    # Partial prefixes are closed with the separator so "Swim" never matches
    # "Swimming". A full set of parts is a whole key, not a prefix.
    k = _kind(kind)
    if len(parts) >= _ARITY[k]:
        raise InvalidFieldError("prefix", f"{k.value} scans take fewer than {_ARITY[k]} discriminators")
    p = prefix_for(k, *parts)
    if parts:
        return p + SEP
    return p
