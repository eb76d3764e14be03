from __future__ import annotations

import pytest

from workoutlog.errors import InvalidFieldError, StorageCancelledError, StorageUnavailableError
from workoutlog.storage import Deadline, DynamoStore, Index, decode_token, encode_token

from .conftest import FakeTable, client_error


def _seed(table: FakeTable) -> DynamoStore:
    store = DynamoStore(table)
    for day in ["2024-03-01", "2024-03-02", "2024-03-03"]:
        store.put_item("User1", f"Workout#Running#{day}", {"gsi1sk": f"Workout#{day}#Running"})
    store.put_item("User1", "Type#Running", {"description": "Running"})
    store.put_item("User2", "Workout#Running#2024-03-01", {"gsi1sk": "Workout#2024-03-01#Running"})
    return store


def test_put_item_writes_keys_with_attributes():
    table = FakeTable()
    DynamoStore(table).put_item("User1", "Type#Swimming", {"description": "Swimming Workout"})
    assert table.put_calls == [{"Item": {"pk": "User1", "sk": "Type#Swimming", "description": "Swimming Workout"}}]


def test_query_by_prefix_stays_in_partition_and_ascends():
    table = FakeTable()
    store = _seed(table)
    page = store.query_by_prefix(Index.PRIMARY, "User1", "Workout#")
    assert [it["sk"] for it in page.items] == [
        "Workout#Running#2024-03-01",
        "Workout#Running#2024-03-02",
        "Workout#Running#2024-03-03",
    ]
    assert page.next_token is None
    call = table.query_calls[-1]
    assert call["ScanIndexForward"] is True
    assert "IndexName" not in call


def test_query_on_secondary_index_names_it():
    table = FakeTable(index_sort_keys={"ByDate": "gsi1sk"})
    store = DynamoStore(table, secondary_index_name="ByDate")
    store.put_item("User1", "Workout#Running#2024-03-02", {"gsi1sk": "Workout#2024-03-02#Running"})
    page = store.query_by_prefix(Index.SECONDARY, "User1", "Workout#2024-03-02#")
    assert len(page.items) == 1
    assert table.query_calls[-1]["IndexName"] == "ByDate"


def test_query_by_range_is_inclusive():
    store = _seed(FakeTable())
    page = store.query_by_range(Index.PRIMARY, "User1", "Workout#Running#2024-03-02", "Workout#Running#2024-03-03")
    assert [it["sk"][-10:] for it in page.items] == ["2024-03-02", "2024-03-03"]


def test_pagination_hands_back_opaque_tokens():
    table = FakeTable()
    store = _seed(table)
    first = store.query_by_prefix(Index.SECONDARY, "User1", "Workout#", limit=2)
    assert len(first.items) == 2
    assert isinstance(first.next_token, str)
    second = store.query_by_prefix(Index.SECONDARY, "User1", "Workout#", first.next_token, limit=2)
    assert [it["gsi1sk"] for it in second.items] == ["Workout#2024-03-03#Running"]
    assert table.query_calls[-1]["ExclusiveStartKey"] == decode_token(first.next_token)


def test_token_round_trip_and_garbage():
    lek = {"pk": "User1", "sk": "Type#Swimming"}
    assert decode_token(encode_token(lek)) == lek
    assert encode_token(None) is None
    assert encode_token({}) is None
    assert decode_token(None) is None
    for bad in ["", "not base64!", "eyJwayI6IDF9", "WzFd", 42]:
        with pytest.raises(InvalidFieldError) as exc:
            decode_token(bad)
        assert exc.value.field == "token"


def test_token_from_another_partition_or_index_is_rejected():
    table = FakeTable()
    store = _seed(table)
    token = store.query_by_prefix(Index.PRIMARY, "User1", "Workout#", limit=1).next_token
    calls = len(table.query_calls)
    with pytest.raises(InvalidFieldError):
        store.query_by_prefix(Index.PRIMARY, "User2", "Workout#", token)
    with pytest.raises(InvalidFieldError):
        store.query_by_prefix(Index.SECONDARY, "User1", "Workout#", token)
    assert len(table.query_calls) == calls


def test_token_outside_the_key_condition_is_rejected():
    table = FakeTable()
    store = _seed(table)
    token = store.query_by_prefix(Index.PRIMARY, "User1", "Workout#", limit=1).next_token
    calls = len(table.query_calls)
    with pytest.raises(InvalidFieldError) as exc:
        store.query_by_prefix(Index.PRIMARY, "User1", "Type#", token)
    assert exc.value.field == "token"
    with pytest.raises(InvalidFieldError):
        store.query_by_range(Index.PRIMARY, "User1", "Workout#Yoga#2024-01-01", "Workout#Yoga#2024-12-31", token)
    assert len(table.query_calls) == calls


def test_token_inside_the_range_resumes():
    table = FakeTable()
    store = _seed(table)
    lower, upper = "Workout#", "Workout$"
    first = store.query_by_range(Index.PRIMARY, "User1", lower, upper, limit=1)
    rest = store.query_by_range(Index.PRIMARY, "User1", lower, upper, first.next_token)
    assert rest.items
    assert rest.items[0]["sk"] > first.items[0]["sk"]


@pytest.mark.parametrize("limit", [0, -1, "10"])
def test_invalid_limit_is_rejected(limit):
    with pytest.raises(InvalidFieldError):
        DynamoStore(FakeTable()).query_by_prefix(Index.PRIMARY, "User1", "Type#", limit=limit)


def test_client_errors_are_wrapped_without_item_contents():
    table = FakeTable(fail_with=client_error("ProvisionedThroughputExceededException", "PutItem"))
    store = DynamoStore(table)
    with pytest.raises(StorageUnavailableError) as exc:
        store.put_item("User1", "Workout#Running#2024-03-01", {"attributes": {"note": "private"}})
    err = exc.value
    assert not err.cancelled
    assert err.owner == "User1"
    assert err.key == "Workout#Running#2024-03-01"
    assert "ProvisionedThroughputExceededException" in str(err)
    assert "private" not in str(err)
    assert err.__cause__ is table.fail_with


def test_unexpected_transport_errors_are_wrapped():
    table = FakeTable(fail_with=ConnectionResetError("reset by peer"))
    with pytest.raises(StorageUnavailableError) as exc:
        DynamoStore(table).query_by_prefix(Index.PRIMARY, "User1", "Type#")
    assert "ConnectionResetError" in str(exc.value)


def test_cancelled_deadline_stops_before_io():
    table = FakeTable()
    deadline = Deadline()
    deadline.cancel()
    with pytest.raises(StorageCancelledError) as exc:
        DynamoStore(table).query_by_prefix(Index.PRIMARY, "User1", "Type#", deadline=deadline)
    assert exc.value.cancelled
    assert isinstance(exc.value, StorageUnavailableError)
    assert table.query_calls == []


def test_deadline_tripping_mid_read_discards_page():
    deadline = Deadline()
    table = FakeTable(on_query=deadline.cancel)
    store = _seed(table)
    with pytest.raises(StorageCancelledError):
        store.query_by_prefix(Index.PRIMARY, "User1", "Workout#", deadline=deadline)
    assert len(table.query_calls) == 1


def test_deadline_expiry_uses_clock():
    now = [100.0]
    deadline = Deadline(2.0, clock=lambda: now[0])
    assert not deadline.expired
    now[0] = 102.5
    assert deadline.expired
    with pytest.raises(StorageCancelledError) as exc:
        deadline.check(owner="User1")
    assert "timed out" in str(exc.value)
    assert not Deadline().expired
    with pytest.raises(InvalidFieldError):
        Deadline(-1)
