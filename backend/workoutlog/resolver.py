from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Generic, Iterator, List, Mapping, Optional, TypeVar

from loguru import logger

from .config import Settings, load_settings
from .db import get_table
from .errors import InvalidFieldError, WorkoutLogError
from .keys import PK_ATTR, SK_ATTR, EntryKind, canonical_date, scan_prefix, validate_owner, workout_key
from .models import WorkoutLogEntry, WorkoutTypeEntry
from .projector import date_prefix, date_range
from .storage import Deadline, DynamoStore, Index, Page, decode_token

E = TypeVar("E")


def now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


@dataclass
class EntryPage(Generic[E]):
    entries: List[E] = field(default_factory=list)
    next_token: Optional[str] = None


class EntrySequence(Generic[E]):
    """
    Lazy, restartable result of one read pattern.

    Nothing is fetched until the sequence is iterated, and every iteration
    starts over from ``start_token``. Entries come back in ascending key
    order, one store page at a time. A cursor is not isolated from writes:
    entries written into the scanned range while it is in use may or may not
    appear.
    """

    def __init__(
        self,
        operation: str,
        owner: str,
        key: str,
        fetch: Callable[[Optional[str]], Page],
        decode: Callable[[Mapping[str, Any]], E],
        *,
        start_token: Optional[str] = None,
    ) -> None:
        self.operation = operation
        self.owner = owner
        self.key = key
        self.start_token = start_token
        self._fetch = fetch
        self._decode = decode

    def pages(self) -> Iterator[EntryPage[E]]:
        token = self.start_token
        while True:
            page = self._fetch_page(token)
            yield page
            token = page.next_token
            if token is None:
                return

    def __iter__(self) -> Iterator[E]:
        for page in self.pages():
            yield from page.entries

    def first_page(self) -> EntryPage[E]:
        return next(self.pages())

    def all(self) -> List[E]:
        # A failure on any page raises; nothing collected so far is returned.
        out: List[E] = []
        for page in self.pages():
            out.extend(page.entries)
        return out

    def _fetch_page(self, token: Optional[str]) -> EntryPage[E]:
        try:
            raw = self._fetch(token)
            entries = [self._decode(item) for item in raw.items]
        except WorkoutLogError as e:
            e.bind(operation=self.operation, owner=self.owner, key=self.key)
            raise
        return EntryPage(entries=entries, next_token=raw.next_token)


class WorkoutLog:
    """
    The fixed access patterns over one single-table store.

    Every operation resolves to an exact put, a sort-key prefix scan or a
    bounded sort-key range on one index, within the owner's partition:

    - types and workouts share the primary index, told apart by the
      ``Type#``/``Workout#`` tag;
    - ``Workout#<type>#<date>`` makes per-type listings a prefix scan and
      per-type date windows a range;
    - the secondary index orders the same items as ``Workout#<date>#<type>``
      for per-day listings and date windows across types.

    Errors are never retried here.
    """

    def __init__(
        self,
        store: Any,
        *,
        now_iso: Callable[[], str] = now_iso,
        page_size: int = 50,
        timeout: Optional[float] = None,
    ) -> None:
        if not isinstance(page_size, int) or page_size < 1:
            raise InvalidFieldError("pageSize", "must be a positive integer")
        self.store = store
        self.now_iso = now_iso
        self.page_size = page_size
        self.timeout = timeout

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "WorkoutLog":
        settings = settings or load_settings()
        store = DynamoStore(get_table(settings), secondary_index_name=settings.secondary_index_name)
        return cls(store, page_size=settings.page_size, timeout=settings.timeout_seconds)

    # --- Writes ---

    def add_workout_type(
        self,
        owner: str,
        type_name: str,
        description: str = "",
        *,
        deadline: Optional[Deadline] = None,
    ) -> WorkoutTypeEntry:
        op = "add_workout_type"
        entry = self._validated(op, owner, lambda: WorkoutTypeEntry(owner, type_name, description))
        self._put(op, entry, deadline)
        return entry

    def log_workout(
        self,
        owner: str,
        type_name: str,
        date: Any,
        attributes: Optional[Mapping[str, Any]] = None,
        *,
        deadline: Optional[Deadline] = None,
    ) -> WorkoutLogEntry:
        # One entry per (owner, type, date): logging the same triple again
        # replaces the stored entry, last write wins.
        op = "log_workout"
        entry = self._validated(op, owner, lambda: WorkoutLogEntry(owner, type_name, date, attributes))
        self._put(op, entry, deadline)
        return entry

    # --- Reads ---

    def list_workout_types(
        self,
        owner: str,
        *,
        start_token: Optional[str] = None,
        page_size: Optional[int] = None,
        deadline: Optional[Deadline] = None,
    ) -> EntrySequence[WorkoutTypeEntry]:
        op = "list_workout_types"
        prefix = self._validated(op, owner, lambda: scan_prefix(EntryKind.TYPE))
        return self._prefix_query(
            op, Index.PRIMARY, owner, prefix, WorkoutTypeEntry.from_item, start_token, page_size, deadline
        )

    def list_workouts(
        self,
        owner: str,
        *,
        start_token: Optional[str] = None,
        page_size: Optional[int] = None,
        deadline: Optional[Deadline] = None,
    ) -> EntrySequence[WorkoutLogEntry]:
        op = "list_workouts"
        prefix = self._validated(op, owner, lambda: scan_prefix(EntryKind.WORKOUT))
        return self._prefix_query(
            op, Index.PRIMARY, owner, prefix, WorkoutLogEntry.from_item, start_token, page_size, deadline
        )

    def list_workouts_by_type(
        self,
        owner: str,
        type_name: str,
        *,
        start_token: Optional[str] = None,
        page_size: Optional[int] = None,
        deadline: Optional[Deadline] = None,
    ) -> EntrySequence[WorkoutLogEntry]:
        op = "list_workouts_by_type"
        prefix = self._validated(op, owner, lambda: scan_prefix(EntryKind.WORKOUT, type_name))
        return self._prefix_query(
            op, Index.PRIMARY, owner, prefix, WorkoutLogEntry.from_item, start_token, page_size, deadline
        )

    def list_workouts_by_date(
        self,
        owner: str,
        date: Any,
        *,
        start_token: Optional[str] = None,
        page_size: Optional[int] = None,
        deadline: Optional[Deadline] = None,
    ) -> EntrySequence[WorkoutLogEntry]:
        op = "list_workouts_by_date"
        prefix = self._validated(op, owner, lambda: date_prefix(date))
        return self._prefix_query(
            op, Index.SECONDARY, owner, prefix, WorkoutLogEntry.from_item, start_token, page_size, deadline
        )

    def list_workouts_between(
        self,
        owner: str,
        start: Any,
        end: Any,
        *,
        start_token: Optional[str] = None,
        page_size: Optional[int] = None,
        deadline: Optional[Deadline] = None,
    ) -> EntrySequence[WorkoutLogEntry]:
        """Workouts of every type dated ``start`` through ``end``, by date."""
        op = "list_workouts_between"
        lower, upper = self._validated(op, owner, lambda: date_range(start, end))
        return self._range_query(op, Index.SECONDARY, owner, lower, upper, start_token, page_size, deadline)

    def list_workouts_by_type_between(
        self,
        owner: str,
        type_name: str,
        start: Any,
        end: Any,
        *,
        start_token: Optional[str] = None,
        page_size: Optional[int] = None,
        deadline: Optional[Deadline] = None,
    ) -> EntrySequence[WorkoutLogEntry]:
        """Workouts of one type dated ``start`` through ``end``, by date."""
        op = "list_workouts_by_type_between"

        def bounds() -> Any:
            lo, hi = canonical_date(start), canonical_date(end)
            if lo > hi:
                raise InvalidFieldError("date", f"range start {lo} is after end {hi}")
            return workout_key(owner, type_name, start)[1], workout_key(owner, type_name, end)[1]

        lower, upper = self._validated(op, owner, bounds)
        return self._range_query(op, Index.PRIMARY, owner, lower, upper, start_token, page_size, deadline)

    # --- Plumbing ---

    def _validated(self, op: str, owner: Any, build: Callable[[], Any]) -> Any:
        try:
            validate_owner(owner)
            return build()
        except InvalidFieldError as e:
            e.bind(operation=op, owner=owner if isinstance(owner, str) else None)
            raise

    def _deadline(self, deadline: Optional[Deadline]) -> Optional[Deadline]:
        if deadline is not None:
            return deadline
        if self.timeout is None:
            return None
        return Deadline(self.timeout)

    def _put(self, op: str, entry: Any, deadline: Optional[Deadline]) -> None:
        item = entry.to_item(self.now_iso())
        pk = item.pop(PK_ATTR)
        sk = item.pop(SK_ATTR)
        try:
            self.store.put_item(pk, sk, item, deadline=self._deadline(deadline))
        except WorkoutLogError as e:
            e.bind(operation=op, owner=pk, key=sk)
            raise
        logger.info(f"{op} owner={pk!r} key={sk!r}")

    def _limit(self, op: str, owner: str, key: str, page_size: Optional[int], start_token: Optional[str]) -> int:
        # Input problems surface at call time, before any page is requested.
        try:
            decode_token(start_token)
            if page_size is None:
                return self.page_size
            if not isinstance(page_size, int) or page_size < 1:
                raise InvalidFieldError("pageSize", "must be a positive integer")
            return page_size
        except InvalidFieldError as e:
            e.bind(operation=op, owner=owner, key=key)
            raise

    def _prefix_query(
        self,
        op: str,
        index: Index,
        owner: str,
        prefix: str,
        decode: Callable[[Mapping[str, Any]], E],
        start_token: Optional[str],
        page_size: Optional[int],
        deadline: Optional[Deadline],
    ) -> EntrySequence[E]:
        key = f"{prefix}*"
        limit = self._limit(op, owner, key, page_size, start_token)

        def fetch(token: Optional[str]) -> Page:
            return self.store.query_by_prefix(
                index, owner, prefix, token, limit=limit, deadline=self._deadline(deadline)
            )

        return EntrySequence(op, owner, key, fetch, decode, start_token=start_token)

    def _range_query(
        self,
        op: str,
        index: Index,
        owner: str,
        lower: str,
        upper: str,
        start_token: Optional[str],
        page_size: Optional[int],
        deadline: Optional[Deadline],
    ) -> EntrySequence[WorkoutLogEntry]:
        key = f"{lower}..{upper}"
        limit = self._limit(op, owner, key, page_size, start_token)

        def fetch(token: Optional[str]) -> Page:
            return self.store.query_by_range(
                index, owner, lower, upper, token, limit=limit, deadline=self._deadline(deadline)
            )

        return EntrySequence(op, owner, key, fetch, WorkoutLogEntry.from_item, start_token=start_token)
