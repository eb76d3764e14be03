from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from workoutlog.resolver import WorkoutLog
from workoutlog.storage import DynamoStore

NOW = "2026-01-01T00:00:00+00:00"


def _conditions(expr: Any) -> List[Tuple[str, str, Tuple[Any, ...]]]:
    # Flatten a boto3 key condition into (operator, attribute, operands).
    parsed = expr.get_expression()
    if parsed["operator"] == "AND":
        out: List[Tuple[str, str, Tuple[Any, ...]]] = []
        for sub in parsed["values"]:
            out.extend(_conditions(sub))
        return out
    key, *operands = parsed["values"]
    return [(parsed["operator"], key.name, tuple(operands))]


def _matches(value: Any, op: str, operands: Tuple[Any, ...]) -> bool:
    if value is None:
        return False
    if op == "=":
        return value == operands[0]
    if op == "begins_with":
        return value.startswith(operands[0])
    if op == "BETWEEN":
        return operands[0] <= value <= operands[1]
    raise AssertionError(f"unsupported key condition: {op}")


def _as_stored(value: Any) -> Any:
    # Mirror the boto3 serializer: no floats, numbers come back as Decimal.
    if isinstance(value, float):
        raise TypeError("Float types are not supported. Use Decimal types instead.")
    if isinstance(value, int) and not isinstance(value, bool):
        return Decimal(value)
    if isinstance(value, dict):
        return {k: _as_stored(v) for k, v in value.items()}
    return value


@dataclass
class FakeTable:
    items: Dict[Tuple[str, str], Dict[str, Any]] = field(default_factory=dict)
    put_calls: List[Dict[str, Any]] = field(default_factory=list)
    query_calls: List[Dict[str, Any]] = field(default_factory=list)
    index_sort_keys: Dict[str, str] = field(default_factory=lambda: {"GSI1": "gsi1sk"})
    fail_with: Optional[Exception] = None
    # Runs inside query(), e.g. to cancel a deadline mid-call.
    on_query: Optional[Callable[[], None]] = None

    def put_item(self, **kwargs: Any) -> Dict[str, Any]:
        self.put_calls.append(kwargs)
        if self.fail_with is not None:
            raise self.fail_with
        item = _as_stored(kwargs["Item"])
        self.items[(item["pk"], item["sk"])] = item
        return {}

    def query(self, **kwargs: Any) -> Dict[str, Any]:
        self.query_calls.append(kwargs)
        if self.fail_with is not None:
            raise self.fail_with
        if self.on_query is not None:
            self.on_query()

        index = kwargs.get("IndexName")
        sort_attr = "sk" if index is None else self.index_sort_keys[index]
        conds = _conditions(kwargs["KeyConditionExpression"])
        # Secondary indexes are sparse: items without the sort attribute are absent.
        rows = [
            it
            for it in self.items.values()
            if sort_attr in it and all(_matches(it.get(attr), op, vals) for op, attr, vals in conds)
        ]
        rows.sort(key=lambda it: (it[sort_attr], it["sk"]))

        start = kwargs.get("ExclusiveStartKey")
        if start is not None:
            marker = (start[sort_attr], start["sk"])
            rows = [it for it in rows if (it[sort_attr], it["sk"]) > marker]

        limit = kwargs.get("Limit")
        page = rows[:limit] if limit is not None else rows
        resp: Dict[str, Any] = {"Items": [dict(it) for it in page], "Count": len(page)}
        # Like DynamoDB, a full page always carries a cursor, even if nothing follows.
        if limit is not None and len(page) == limit:
            last = page[-1]
            lek = {"pk": last["pk"], "sk": last["sk"]}
            if index is not None:
                lek[sort_attr] = last[sort_attr]
            resp["LastEvaluatedKey"] = lek
        return resp


def client_error(code: str = "ProvisionedThroughputExceededException", operation: str = "Query") -> Exception:
    from botocore.exceptions import ClientError

    return ClientError({"Error": {"Code": code, "Message": "Rate of requests exceeds the allowed throughput."}}, operation)


def make_log(table: Optional[FakeTable] = None, **kwargs: Any) -> WorkoutLog:
    return WorkoutLog(DynamoStore(table if table is not None else FakeTable()), now_iso=lambda: NOW, **kwargs)
