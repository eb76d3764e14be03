from __future__ import annotations

import base64
import binascii
import json
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from loguru import logger

from .errors import InvalidFieldError, StorageCancelledError, StorageUnavailableError
from .keys import GSI1_SK_ATTR, PK_ATTR, SK_ATTR


class Index(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


@dataclass
class Page:
    items: List[Dict[str, Any]] = field(default_factory=list)
    next_token: Optional[str] = None


class Deadline:
    """
    Timeout and cancellation signal for storage calls.

    Checked before every storage call and again after each read. A call
    already in flight is not shortened to fit the deadline: it runs until the
    client's own connect and read timeouts, and a page read while the deadline
    tripped is then discarded.
    """

    def __init__(self, timeout: Optional[float] = None, *, clock: Callable[[], float] = time.monotonic) -> None:
        if timeout is not None and timeout < 0:
            raise InvalidFieldError("timeout", "must not be negative")
        self._clock = clock
        self._expires_at = None if timeout is None else clock() + timeout
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and self._clock() >= self._expires_at

    def check(self, *, operation: Optional[str] = None, owner: Optional[str] = None, key: Optional[str] = None) -> None:
        if self.cancelled:
            raise StorageCancelledError("storage call cancelled", operation=operation, owner=owner, key=key)
        if self.expired:
            raise StorageCancelledError("storage call timed out", operation=operation, owner=owner, key=key)


def encode_token(last_key: Optional[Mapping[str, Any]]) -> Optional[str]:
    if not last_key:
        return None
    raw = json.dumps(dict(last_key), separators=(",", ":"), sort_keys=True)
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_token(token: Optional[str]) -> Optional[Dict[str, str]]:
    if token is None:
        return None
    if not isinstance(token, str) or not token:
        raise InvalidFieldError("token", "not a continuation token")
    try:
        data = json.loads(base64.urlsafe_b64decode(token.encode("ascii")).decode("utf-8"))
    except (binascii.Error, UnicodeError, ValueError):
        raise InvalidFieldError("token", "not a continuation token") from None
    if not isinstance(data, dict) or not all(isinstance(k, str) and isinstance(v, str) for k, v in data.items()):
        raise InvalidFieldError("token", "not a continuation token")
    return data


def _describe(exc: Exception) -> str:
    # Error codes only: SDK messages can echo item contents.
    from botocore.exceptions import ClientError  # type: ignore

    if isinstance(exc, ClientError):
        return str(exc.response.get("Error", {}).get("Code") or "ClientError")
    return exc.__class__.__name__


class DynamoStore:
    """
    Transport to one DynamoDB table (boto3 ``Table`` resource or a stand-in).

    Both indexes are partitioned by ``pk``; the primary index sorts by ``sk``,
    the secondary one by ``gsi1sk``. Queries return ascending pages.
    """

    def __init__(self, table: Any, *, secondary_index_name: str = "GSI1") -> None:
        self.table = table
        self.secondary_index_name = secondary_index_name

    def put_item(
        self,
        partition_key: str,
        sort_key: str,
        attributes: Mapping[str, Any],
        *,
        deadline: Optional[Deadline] = None,
    ) -> None:
        item = dict(attributes)
        item[PK_ATTR] = partition_key
        item[SK_ATTR] = sort_key
        self._call(
            "put_item", partition_key, sort_key, deadline, lambda: self.table.put_item(Item=item), discard=False
        )
        logger.debug(f"put_item owner={partition_key!r} key={sort_key!r}")

    def query_by_prefix(
        self,
        index: Index,
        partition_key: str,
        prefix: str,
        token: Optional[str] = None,
        *,
        limit: Optional[int] = None,
        deadline: Optional[Deadline] = None,
    ) -> Page:
        from boto3.dynamodb.conditions import Key  # type: ignore

        cond = Key(PK_ATTR).eq(partition_key) & Key(self._sort_attr(index)).begins_with(prefix)
        return self._query(
            index, partition_key, f"{prefix}*", cond, token, limit, deadline, lambda v: v.startswith(prefix)
        )

    def query_by_range(
        self,
        index: Index,
        partition_key: str,
        lower: str,
        upper: str,
        token: Optional[str] = None,
        *,
        limit: Optional[int] = None,
        deadline: Optional[Deadline] = None,
    ) -> Page:
        from boto3.dynamodb.conditions import Key  # type: ignore

        # BETWEEN is inclusive on both ends.
        cond = Key(PK_ATTR).eq(partition_key) & Key(self._sort_attr(index)).between(lower, upper)
        return self._query(
            index, partition_key, f"{lower}..{upper}", cond, token, limit, deadline, lambda v: lower <= v <= upper
        )

    def _sort_attr(self, index: Index) -> str:
        return GSI1_SK_ATTR if index is Index.SECONDARY else SK_ATTR

    def _key_attrs(self, index: Index) -> Tuple[str, ...]:
        if index is Index.SECONDARY:
            return (PK_ATTR, SK_ATTR, GSI1_SK_ATTR)
        return (PK_ATTR, SK_ATTR)

    def _query(
        self,
        index: Index,
        partition_key: str,
        described: str,
        cond: Any,
        token: Optional[str],
        limit: Optional[int],
        deadline: Optional[Deadline],
        in_bounds: Callable[[str], bool],
    ) -> Page:
        kwargs: Dict[str, Any] = {"KeyConditionExpression": cond, "ScanIndexForward": True}
        if index is Index.SECONDARY:
            kwargs["IndexName"] = self.secondary_index_name
        if limit is not None:
            if not isinstance(limit, int) or limit < 1:
                raise InvalidFieldError("limit", "must be a positive integer", owner=partition_key, key=described)
            kwargs["Limit"] = limit

        start = decode_token(token)
        if start is not None:
            # A resumed query must restart inside its own key condition.
            if (
                start.get(PK_ATTR) != partition_key
                or set(start) != set(self._key_attrs(index))
                or not in_bounds(start[self._sort_attr(index)])
            ):
                raise InvalidFieldError(
                    "token", "does not belong to this query", owner=partition_key, key=described
                )
            kwargs["ExclusiveStartKey"] = start

        resp = self._call("query", partition_key, described, deadline, lambda: self.table.query(**kwargs))
        items = list(resp.get("Items") or [])
        next_token = encode_token(resp.get("LastEvaluatedKey"))
        logger.debug(
            f"query index={index.value} owner={partition_key!r} key={described!r} "
            f"items={len(items)} more={next_token is not None}"
        )
        return Page(items=items, next_token=next_token)

    def _call(
        self,
        operation: str,
        partition_key: str,
        key: str,
        deadline: Optional[Deadline],
        fn: Callable[[], Any],
        *,
        discard: bool = True,
    ) -> Any:
        self._check(deadline, operation, partition_key, key)
        try:
            result = fn()
        except Exception as e:
            code = _describe(e)
            logger.warning(f"DynamoDB {operation} failed owner={partition_key!r} key={key!r}: {code}")
            raise StorageUnavailableError(f"DynamoDB {operation} failed: {code}", owner=partition_key, key=key) from e
        # A deadline that tripped mid-read discards the result.
        if discard:
            self._check(deadline, operation, partition_key, key)
        return result

    def _check(self, deadline: Optional[Deadline], operation: str, partition_key: str, key: str) -> None:
        if deadline is None:
            return
        try:
            deadline.check(owner=partition_key, key=key)
        except StorageCancelledError as e:
            logger.warning(f"DynamoDB {operation} abandoned owner={partition_key!r} key={key!r}: {e.message}")
            raise
