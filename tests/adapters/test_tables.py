from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from espa.adapters.db import MemoryTableService, SQLiteTableService, TableError
from espa.services.control import DependencyFailure
from espa.services.control.ids import generate_entry_id
from espa.services.control.models import Entry
from espa.services.control.stores import CredentialStore, EntryStore


@pytest.fixture(params=["memory", "sqlite"])
def service(request, tmp_path):
    if request.param == "memory":
        svc = MemoryTableService()
    else:
        svc = SQLiteTableService(tmp_path / "nested" / "espa.sqlite")
    yield svc
    svc.close()


def test_upsert_get_delete(service):
    table = service.table("devices")
    assert table.get("pi-1", "metadata") is None
    table.upsert({"partitionKey": "pi-1", "rowKey": "metadata", "friendlyName": "Lobby"})
    table.upsert({"partitionKey": "pi-1", "rowKey": "metadata", "masterEmail": "a@x.fi"})
    assert table.get("pi-1", "metadata") == {"partitionKey": "pi-1", "rowKey": "metadata", "masterEmail": "a@x.fi"}
    table.delete("pi-1", "metadata")
    table.delete("pi-1", "metadata")
    assert table.get("pi-1", "metadata") is None


def test_merge_keeps_other_fields(service):
    table = service.table("users")
    table.upsert({"partitionKey": "a@x.fi", "rowKey": "profile", "pinHash": "h", "failedAttempts": 0})
    table.merge({"partitionKey": "a@x.fi", "rowKey": "profile", "failedAttempts": 2})
    assert table.get("a@x.fi", "profile")["pinHash"] == "h"
    assert table.get("a@x.fi", "profile")["failedAttempts"] == 2


def test_insert_only_when_absent(service):
    table = service.table("users")
    assert table.insert({"partitionKey": "$system", "rowKey": "admin-assigned", "email": "a@x.fi"}) is True
    assert table.insert({"partitionKey": "$system", "rowKey": "admin-assigned", "email": "b@x.fi"}) is False
    assert table.get("$system", "admin-assigned")["email"] == "a@x.fi"


def test_query_by_partition_or_row(service):
    table = service.table("permissions")
    table.upsert({"partitionKey": "a@x.fi", "rowKey": "pi-1", "role": "master"})
    table.upsert({"partitionKey": "b@x.fi", "rowKey": "pi-1", "role": "contributor"})
    table.upsert({"partitionKey": "a@x.fi", "rowKey": "pi-2", "role": "master"})
    assert {row["rowKey"] for row in table.query(partition_key="a@x.fi")} == {"pi-1", "pi-2"}
    assert {row["partitionKey"] for row in table.query(row_key="pi-1")} == {"a@x.fi", "b@x.fi"}
    assert len(list(table.query())) == 3


def test_tables_are_isolated(service):
    service.table("a").upsert({"partitionKey": "k", "rowKey": "r", "v": 1})
    assert service.table("b").get("k", "r") is None


def test_entity_without_keys_is_rejected(service):
    with pytest.raises(TableError):
        service.table("a").upsert({"rowKey": "r"})


def test_sqlite_survives_reopen(tmp_path):
    path = tmp_path / "espa.sqlite"
    first = SQLiteTableService(path)
    first.table("devices").upsert({"partitionKey": "pi-1", "rowKey": "metadata", "friendlyName": "Lobby"})
    first.close()
    second = SQLiteTableService(path)
    assert second.table("devices").get("pi-1", "metadata")["friendlyName"] == "Lobby"
    second.close()


def test_store_translates_table_errors(tmp_path):
    svc = SQLiteTableService(tmp_path / "espa.sqlite")
    store = CredentialStore(svc.table("users"))
    svc.close()
    with pytest.raises(DependencyFailure) as excinfo:
        store.get_profile("a@x.fi")
    assert excinfo.value.envelope.code == "storage_failure"


def test_entry_store_returns_newest_of_whole_partition(service):
    store = EntryStore(service.table("entries"))
    start = datetime(2025, 3, 1, tzinfo=timezone.utc)
    for index in range(250):
        moment = start + timedelta(seconds=index)
        store.add(Entry(key="pi-1", entry_id=generate_entry_id(moment), timestamp=moment, value1=f"v{index}"))

    latest = store.latest("pi-1", limit=3)
    assert [entry.value1 for entry in latest] == ["v249", "v248", "v247"]
