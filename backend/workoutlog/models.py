from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, DecimalException
from typing import Any, Dict, Mapping, Optional, Tuple

from .errors import InvalidFieldError, MalformedKeyError
from .keys import (
    GSI1_SK_ATTR,
    PK_ATTR,
    SK_ATTR,
    DecodedKey,
    EntryKind,
    canonical_date,
    decode,
    decode_secondary,
    type_key,
    validate_owner,
    validate_type_name,
    workout_key,
)
from .projector import project

_SCALARS = (str, int, float, Decimal, bool, type(None))


def validate_attributes(attributes: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    # Error messages name no keys or values: the payload is opaque.
    if attributes is None:
        return {}
    if not isinstance(attributes, Mapping):
        raise InvalidFieldError("attributes", "must be a mapping of string to scalar")
    out: Dict[str, Any] = {}
    for k, v in attributes.items():
        if not isinstance(k, str) or not k:
            raise InvalidFieldError("attributes", "keys must be non-empty strings")
        if not isinstance(v, _SCALARS):
            raise InvalidFieldError("attributes", "values must be strings, numbers, booleans or null")
        if isinstance(v, (float, Decimal)) and not Decimal(str(v)).is_finite():
            raise InvalidFieldError("attributes", "numbers must be finite")
        if isinstance(v, (int, float, Decimal)) and not isinstance(v, bool):
            _check_number(v)
        out[k] = v
    return out


def _check_number(value: Any) -> None:
    # 38 significant digits, magnitude 1E-130 to 9.9E125.
    from boto3.dynamodb.types import DYNAMODB_CONTEXT  # type: ignore

    try:
        DYNAMODB_CONTEXT.create_decimal(_store_value(value))
    except DecimalException:
        raise InvalidFieldError("attributes", "numbers must fit the store's number type") from None


def _store_value(value: Any) -> Any:
    # The store has no float type.
    if isinstance(value, float):
        return Decimal(str(value))
    return value


def _plain(value: Any) -> Any:
    # DynamoDB returns numbers as Decimal.
    if isinstance(value, Decimal):
        if value % 1 == 0:
            return int(value)
        return float(value)
    return value


def _decode_item(item: Mapping[str, Any], expected: EntryKind) -> Tuple[str, DecodedKey]:
    owner = item.get(PK_ATTR)
    sk = item.get(SK_ATTR)
    try:
        if not isinstance(owner, str) or not owner:
            raise MalformedKeyError("item has no partition key")
        decoded = decode(sk)
        if decoded.kind is not expected:
            raise MalformedKeyError(f"expected a {expected.value} entry, found {decoded.kind.value}")
        # Denormalised copies must agree with the key they were written from.
        if item.get("typeName") != decoded.type_name:
            raise MalformedKeyError("typeName attribute disagrees with sort key")
        if item.get("kind", decoded.kind.value) != decoded.kind.value:
            raise MalformedKeyError("kind attribute disagrees with sort key")
        if expected is EntryKind.WORKOUT:
            if item.get("date") != decoded.date:
                raise MalformedKeyError("date attribute disagrees with sort key")
            gsi1sk = item.get(GSI1_SK_ATTR)
            if gsi1sk is not None and decode_secondary(gsi1sk)[1:] != decoded[1:]:
                raise MalformedKeyError("secondary sort key disagrees with sort key")
    except MalformedKeyError as e:
        e.bind(owner=owner if isinstance(owner, str) else None, key=sk if isinstance(sk, str) else None)
        raise
    return owner, decoded


@dataclass(frozen=True)
class WorkoutTypeEntry:
    owner: str
    type_name: str
    description: str = ""

    kind = EntryKind.TYPE

    def __post_init__(self) -> None:
        validate_owner(self.owner)
        validate_type_name(self.type_name)
        if not isinstance(self.description, str):
            raise InvalidFieldError("description", "must be a string")

    def key(self) -> Tuple[str, str]:
        return type_key(self.owner, self.type_name)

    def to_item(self, updated_at: str) -> Dict[str, Any]:
        pk, sk = self.key()
        return {
            PK_ATTR: pk,
            SK_ATTR: sk,
            "kind": self.kind.value,
            "typeName": self.type_name,
            "description": self.description,
            "updatedAt": updated_at,
        }

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "WorkoutTypeEntry":
        owner, decoded = _decode_item(item, EntryKind.TYPE)
        return cls(owner=owner, type_name=decoded.type_name, description=str(item.get("description") or ""))


@dataclass(frozen=True)
class WorkoutLogEntry:
    """
    One logged workout. ``attributes`` is an opaque payload (duration,
    calories, ...) that is stored and returned but never interpreted.

    Two entries for the same owner, type and date share a key: the later
    write replaces the earlier one.
    """

    owner: str
    type_name: str
    date: str
    attributes: Dict[str, Any] = field(default_factory=dict)

    kind = EntryKind.WORKOUT

    def __post_init__(self) -> None:
        validate_owner(self.owner)
        validate_type_name(self.type_name)
        object.__setattr__(self, "date", canonical_date(self.date))
        object.__setattr__(self, "attributes", validate_attributes(self.attributes))

    def key(self) -> Tuple[str, str]:
        return workout_key(self.owner, self.type_name, self.date)

    def to_item(self, updated_at: str) -> Dict[str, Any]:
        pk, sk = self.key()
        _, gsi1sk = project(self)
        return {
            PK_ATTR: pk,
            SK_ATTR: sk,
            GSI1_SK_ATTR: gsi1sk,
            "kind": self.kind.value,
            "typeName": self.type_name,
            "date": self.date,
            "attributes": {k: _store_value(v) for k, v in self.attributes.items()},
            "updatedAt": updated_at,
        }

    @classmethod
    def from_item(cls, item: Mapping[str, Any]) -> "WorkoutLogEntry":
        owner, decoded = _decode_item(item, EntryKind.WORKOUT)
        raw = item.get("attributes") or {}
        if not isinstance(raw, Mapping):
            raise MalformedKeyError("attributes is not a map", owner=owner, key=item.get(SK_ATTR))
        try:
            return cls(
                owner=owner,
                type_name=decoded.type_name,
                date=str(decoded.date),
                attributes={k: _plain(v) for k, v in raw.items()},
            )
        except InvalidFieldError as e:
            raise MalformedKeyError(f"stored entry is invalid: {e.message}", owner=owner, key=item.get(SK_ATTR)) from e
