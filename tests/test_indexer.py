import asyncio
import gc
import logging
from copy import deepcopy

import pytest

from sitesearch_sync import config as config_module
from sitesearch_sync.core.errors import (
    CredentialError,
    NoRecordsFoundError,
    RecordTooBigRemote,
    RemoteTransportError,
    UnknownSettingError,
)
from sitesearch_sync.indexing.indexer import Indexer, ReconciliationPlan


# ---------------------------------------------------------------------
# In-memory search backend
# ---------------------------------------------------------------------

class FakeIndex:
    def __init__(self, backend, name):
        self.backend = backend
        self.name = name

    async def upsert_objects(self, objects):
        ids = [obj["objectID"] for obj in objects]
        self.backend.calls.append(("upsert", self.name, ids))
        failing = [object_id for object_id in ids if object_id in self.backend.fail_on]
        if failing:
            raise RemoteTransportError(
                "Cannot POST",
                {
                    "http_error": 400,
                    "index_name": self.name,
                    "message": f"Record at the position 0 objectID={failing[0]} "
                    "is too big size=20000 bytes.",
                },
            )
        self.backend.active += 1
        self.backend.max_active = max(self.backend.max_active, self.backend.active)
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        self.backend.active -= 1
        records = self.backend.indexes.setdefault(self.name, {})
        for obj in objects:
            records[obj["objectID"]] = obj
        return self.backend.next_task()

    async def delete_objects(self, object_ids):
        self.backend.calls.append(("delete", self.name, list(object_ids)))
        records = self.backend.indexes.setdefault(self.name, {})
        for object_id in object_ids:
            records.pop(object_id, None)
        return self.backend.next_task()

    async def exists(self):
        return self.name in self.backend.indexes or self.name in self.backend.settings

    async def browse_object_ids(self):
        self.backend.calls.append(("browse", self.name))
        for object_id in list(self.backend.indexes.get(self.name, {})):
            yield object_id

    async def get_settings(self):
        self.backend.calls.append(("get_settings", self.name))
        if self.name not in self.backend.indexes and self.name not in self.backend.settings:
            return None
        return deepcopy(self.backend.settings.get(self.name, {}))

    async def set_settings(self, settings):
        self.backend.calls.append(("set_settings", self.name))
        if self.backend.reject_setting:
            raise RemoteTransportError(
                "Cannot PUT",
                {
                    "http_error": 400,
                    "message": f"Invalid object attributes: {self.backend.reject_setting} near line:1",
                },
            )
        self.backend.settings[self.name] = deepcopy(settings)
        self.backend.indexes.setdefault(self.name, {})
        return self.backend.next_task()

    async def delete_index(self):
        self.backend.calls.append(("delete_index", self.name))
        self.backend.indexes.pop(self.name, None)
        self.backend.settings.pop(self.name, None)
        return self.backend.next_task()

    async def wait_task(self, task_id):
        self.backend.waited.append(task_id)


class FakeClient:
    def __init__(self):
        self.indexes = {}
        self.settings = {}
        self.calls = []
        self.waited = []
        self.fail_on = set()
        self.reject_setting = None
        self.active = 0
        self.max_active = 0
        self._task = 0

    def next_task(self):
        self._task += 1
        return self._task

    def init_index(self, name):
        return FakeIndex(self, name)

    async def move_index(self, source, destination):
        self.calls.append(("move", source, destination))
        self.indexes[destination] = self.indexes.pop(source, {})
        self.settings[destination] = self.settings.pop(source, {})
        return self.next_task()

    async def aclose(self):
        pass

    def writes(self):
        return [call for call in self.calls if call[0] not in ("get_settings", "browse")]


def records(*ids):
    return [{"objectID": object_id, "text": object_id} for object_id in ids]


@pytest.fixture
def backend():
    return FakeClient()


@pytest.fixture
def make_indexer(make_settings, backend):
    def _make(**overrides):
        overrides.setdefault("settings", False)
        return Indexer(make_settings(**overrides), client=backend)

    return _make


@pytest.fixture
def no_default_settings(monkeypatch):
    monkeypatch.setattr(config_module, "DEFAULT_INDEX_SETTINGS", {})


# ---------------------------------------------------------------------
# Plan
# ---------------------------------------------------------------------

def test_plan_is_set_difference():
    plan = ReconciliationPlan.compute(records("foo", "bar", "bar"), ["foo", "baz"])

    assert plan.to_delete == ["baz"]
    assert [r["objectID"] for r in plan.to_add] == ["bar"]
    assert not plan.is_empty


def test_plan_empty_when_identical():
    assert ReconciliationPlan.compute(records("a", "b"), ["b", "a"]).is_empty


# ---------------------------------------------------------------------
# Diff mode
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_diff_mode_deletes_old_and_adds_new(make_indexer, backend):
    backend.indexes["my_index"] = {"foo": {}, "baz": {}}

    await make_indexer().run(records("foo", "bar"))

    assert backend.writes() == [
        ("delete", "my_index", ["baz"]),
        ("upsert", "my_index", ["bar"]),
    ]
    assert sorted(backend.indexes["my_index"]) == ["bar", "foo"]


@pytest.mark.asyncio
async def test_diff_mode_with_nothing_to_change(make_indexer, backend, caplog):
    backend.indexes["my_index"] = {"foo": {}, "bar": {}}

    with caplog.at_level(logging.INFO, logger="sitesearch.indexer"):
        await make_indexer().run(records("bar", "foo"))

    assert backend.writes() == []
    assert "Nothing to index" in caplog.text


@pytest.mark.asyncio
async def test_diff_mode_on_missing_index_uploads_everything(make_indexer, backend):
    await make_indexer().run(records("a", "b"))

    assert backend.writes() == [("upsert", "my_index", ["a", "b"])]


@pytest.mark.asyncio
async def test_dry_run_never_writes(make_indexer, backend, caplog):
    backend.indexes["my_index"] = {"foo": {}, "baz": {}}

    with caplog.at_level(logging.INFO, logger="sitesearch.indexer"):
        await make_indexer(dry_run=True, settings={"foo": "bar"}).run(records("foo", "bar"))

    assert backend.writes() == []
    assert backend.indexes["my_index"] == {"foo": {}, "baz": {}}
    assert "DRY RUN" in caplog.text


@pytest.mark.asyncio
async def test_empty_record_set_is_an_error(make_indexer, backend):
    with pytest.raises(NoRecordsFoundError):
        await make_indexer().run([])
    assert backend.calls == []


def test_local_object_ids_are_sorted():
    assert Indexer.local_object_ids(records("b", "a") + [{"text": "no id"}]) == ["a", "b"]


@pytest.mark.asyncio
async def test_remote_object_ids_are_sorted(make_indexer, backend):
    backend.indexes["my_index"] = {"b": {}, "c": {}, "a": {}}
    assert await make_indexer().remote_object_ids("my_index") == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_index_exists(make_indexer, backend):
    backend.indexes["my_index"] = {}
    indexer = make_indexer()

    assert await indexer.index_exists("my_index") is True
    assert await indexer.index_exists("other") is False


@pytest.mark.asyncio
async def test_diff_mode_skips_browse_of_missing_index(make_indexer, backend):
    await make_indexer().run(records("a"))

    assert ("browse", "my_index") not in backend.calls


@pytest.mark.asyncio
async def test_delete_nothing_is_a_no_op(make_indexer, backend):
    assert await make_indexer().delete_records_by_id("my_index", []) is None
    assert backend.calls == []


# ---------------------------------------------------------------------
# Batching
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_records_are_sent_in_batches(make_indexer, backend):
    await make_indexer(indexing_batch_size=2).update_records("my_index", records("a", "b", "c", "d", "e"))

    assert [call[2] for call in backend.writes()] == [["a", "b"], ["c", "d"], ["e"]]


@pytest.mark.asyncio
async def test_concurrency_is_bounded(make_indexer, backend):
    indexer = make_indexer(indexing_batch_size=1, indexing_concurrency=2)

    task_ids = await indexer.update_records("my_index", records("a", "b", "c", "d", "e"))

    assert backend.max_active == 2
    assert len(task_ids) == 5
    assert sorted(backend.indexes["my_index"]) == ["a", "b", "c", "d", "e"]


@pytest.mark.asyncio
async def test_failed_batch_stops_new_batches(make_indexer, backend):
    backend.fail_on = {"c"}
    indexer = make_indexer(indexing_batch_size=2)

    with pytest.raises(RecordTooBigRemote) as exc_info:
        await indexer.update_records("my_index", records("a", "b", "c", "d", "e"))

    assert [call[2] for call in backend.calls] == [["a", "b"], ["c", "d"]]
    assert exc_info.value.record["objectID"] == "c"
    assert exc_info.value.size == 20000


@pytest.mark.asyncio
async def test_failed_batch_lets_in_flight_batches_finish(make_indexer, backend):
    backend.fail_on = {"a"}
    indexer = make_indexer(indexing_batch_size=1, indexing_concurrency=2)

    with pytest.raises(RecordTooBigRemote):
        await indexer.update_records("my_index", records("a", "b", "c", "d"))

    assert [call[2] for call in backend.calls] == [["a"], ["b"]]
    assert list(backend.indexes["my_index"]) == ["b"]


@pytest.mark.asyncio
async def test_several_failed_batches_report_a_single_error(make_indexer, backend, caplog):
    backend.fail_on = {"b", "c"}
    indexer = make_indexer(indexing_batch_size=1, indexing_concurrency=3)

    with caplog.at_level(logging.DEBUG):
        with pytest.raises(RecordTooBigRemote) as exc_info:
            await indexer.update_records("my_index", records("a", "b", "c", "d", "e"))
        gc.collect()
        await asyncio.sleep(0)

    assert [call[2] for call in backend.calls] == [["a"], ["b"], ["c"]]
    assert exc_info.value.record["objectID"] == "b"
    assert not [r for r in caplog.records if r.name == "asyncio"]
    assert "Another batch failed as well" in caplog.text


# ---------------------------------------------------------------------
# Atomic mode
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_atomic_mode_rebuilds_through_tmp_index(make_indexer, backend):
    backend.indexes["my_index"] = {"old": {}}
    backend.settings["my_index"] = {"customRanking": ["desc(likes)"], "version": 2}

    indexer = make_indexer(indexing_mode="atomic", settings={"distinct": False})
    await indexer.run(records("a", "b"))

    assert backend.writes() == [
        ("delete_index", "my_index_tmp"),
        ("upsert", "my_index_tmp", ["a", "b"]),
        ("set_settings", "my_index_tmp"),
        ("move", "my_index_tmp", "my_index"),
    ]
    assert sorted(backend.indexes["my_index"]) == ["a", "b"]
    assert "my_index_tmp" not in backend.indexes

    settings = backend.settings["my_index"]
    assert settings["distinct"] is False
    assert "version" not in settings
    assert settings["userData"]["settingID"] == indexer.local_setting_id()
    # Every write to the tmp index was awaited before the move
    assert backend.waited[:-1] == [1, 2, 3]


@pytest.mark.asyncio
async def test_atomic_mode_keeps_remote_settings_when_unmanaged(make_indexer, backend):
    backend.settings["my_index"] = {"customRanking": ["desc(likes)"], "userData": {"k": "v"}}

    await make_indexer(indexing_mode="atomic").run(records("a"))

    assert backend.settings["my_index"] == {
        "customRanking": ["desc(likes)"],
        "userData": {"k": "v"},
    }


@pytest.mark.asyncio
async def test_atomic_dry_run_never_writes(make_indexer, backend):
    backend.indexes["my_index"] = {"old": {}}

    await make_indexer(indexing_mode="atomic", dry_run=True).run(records("a"))

    assert backend.writes() == []
    assert backend.indexes == {"my_index": {"old": {}}}


# ---------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------

@pytest.mark.usefixtures("no_default_settings")
def test_local_setting_id_ignores_user_data(make_indexer):
    indexer = make_indexer(settings={"foo": "bar", "userData": {"settingID": "old"}})
    assert indexer.local_setting_id() == "9bb58f26192e4ba00f01e2e7b136bbd8"


@pytest.mark.asyncio
async def test_settings_pushed_once(make_indexer, backend):
    indexer = make_indexer(settings={"distinct": False})

    await indexer.update_settings("my_index")
    await indexer.update_settings("my_index")

    assert [call for call in backend.calls if call[0] == "set_settings"] == [
        ("set_settings", "my_index"),
    ]
    stored = backend.settings["my_index"]
    assert stored["distinct"] is False
    assert stored["userData"]["settingID"] == indexer.local_setting_id()
    assert "pluginVersion" in stored["userData"]


@pytest.mark.asyncio
@pytest.mark.usefixtures("no_default_settings")
async def test_changed_settings_are_pushed(make_indexer, backend):
    backend.settings["my_index"] = {"foo": "baz", "userData": {"settingID": "outdated"}}

    await make_indexer(settings={"foo": "bar"}).update_settings("my_index")

    assert backend.settings["my_index"]["foo"] == "bar"
    assert backend.settings["my_index"]["userData"]["settingID"] == "9bb58f26192e4ba00f01e2e7b136bbd8"


@pytest.mark.asyncio
@pytest.mark.usefixtures("no_default_settings")
async def test_manual_dashboard_edit_is_reported_not_reverted(make_indexer, backend, caplog):
    backend.settings["my_index"] = {
        "foo": "baz",
        "userData": {"settingID": "9bb58f26192e4ba00f01e2e7b136bbd8"},
    }

    with caplog.at_level(logging.WARNING, logger="sitesearch.indexer"):
        await make_indexer(settings={"foo": "bar"}).update_settings("my_index")

    assert ("set_settings", "my_index") not in backend.calls
    assert backend.settings["my_index"]["foo"] == "baz"
    assert "foo: baz" in caplog.text
    assert "my_index" in caplog.text


@pytest.mark.asyncio
@pytest.mark.usefixtures("no_default_settings")
async def test_force_settings_overwrites_manual_edits(make_indexer, backend):
    backend.settings["my_index"] = {
        "foo": "baz",
        "userData": {"settingID": "9bb58f26192e4ba00f01e2e7b136bbd8"},
    }

    await make_indexer(settings={"foo": "bar"}, force_settings=True).update_settings("my_index")

    assert backend.settings["my_index"]["foo"] == "bar"


@pytest.mark.asyncio
async def test_settings_false_leaves_remote_settings_alone(make_indexer, backend):
    await make_indexer(settings=False).update_settings("my_index")
    assert backend.calls == []


@pytest.mark.asyncio
async def test_unknown_setting_is_identified(make_indexer, backend):
    backend.reject_setting = "deadbeef"

    with pytest.raises(UnknownSettingError) as exc_info:
        await make_indexer(settings={"deadbeef": "foo"}).update_settings("my_index")

    assert exc_info.value.setting_value == "foo"


# ---------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------

@pytest.mark.parametrize("missing", ["application_id", "index_name", "api_key"])
def test_init_requires_credentials(make_settings, missing):
    indexer = Indexer(make_settings(**{missing: None}))

    with pytest.raises(CredentialError) as exc_info:
        indexer.init()

    assert exc_info.value.missing == missing


@pytest.mark.asyncio
async def test_init_creates_owned_client(make_settings):
    indexer = Indexer(make_settings())
    indexer.init()

    assert indexer.client.application_id == "APPID"
    await indexer.aclose()
    assert indexer._client is None
