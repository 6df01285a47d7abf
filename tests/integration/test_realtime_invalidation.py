import pytest

from schoolboard.core.backend import MemoryBackend
from schoolboard.query.client import QueryClient
from schoolboard.realtime import websockets
from schoolboard.realtime.websockets import handle_change, register_live_client, unregister_live_client
from schoolboard.services.list_page import ListPageController
from tests.helpers.backends import CountingBackend
from tests.helpers.fakes import make_session
from tests.helpers.seed import seed_tables


@pytest.fixture
def live_client():
    client = register_live_client(QueryClient(retry=False))
    yield client
    unregister_live_client(client)


@pytest.mark.asyncio
async def test_change_invalidates_only_its_domain(live_client):
    backend = CountingBackend(seed_tables())
    students = ListPageController(live_client, backend, make_session("a1", "admin"))
    teachers = ListPageController(live_client, backend, make_session("a1", "admin"))
    await students.load("student", {})
    await teachers.load("teacher", {})
    backend.calls.clear()

    await backend.insert("Student", {"id": "s9", "name": "Eva", "surname": "Luna", "classId": 1})
    result = await handle_change({
        "type": "INSERT",
        "table": "Student",
        "schema": "public",
        "record": {"id": "s9"},
        "old_record": None,
    })

    assert result.domain == "student"
    assert result.invalidated == 1
    assert backend.tables_called == ["Student"]

    view = await students.load("student", {})
    assert "s9" in [row["id"] for row in view.rows]
    teacher_key = teachers.list_key("teacher", teachers.parse_params("teacher", {}))
    assert not live_client.get_entry(teacher_key).state.is_invalidated


@pytest.mark.asyncio
async def test_lowercase_table_names_map_to_domains(live_client):
    live_client.set_query_data(
        ListPageController(live_client, MemoryBackend(), make_session("a1", "admin")).detail_key("event", 1),
        {"record": {"id": 1}},
    )
    result = await handle_change({"type": "DELETE", "table": "event", "old_record": {"id": 1}})

    assert result.domain == "event"
    assert result.invalidated == 1


@pytest.mark.asyncio
async def test_untracked_tables_are_ignored(live_client):
    live_client.set_query_data(
        ListPageController(live_client, MemoryBackend(), make_session("a1", "admin")).detail_key("student", "s1"),
        {"record": {"id": "s1"}},
    )
    result = await handle_change({"type": "UPDATE", "table": "AuditLog", "record": {"id": 7}})

    assert result.domain is None
    assert result.invalidated == 0


class RecordingServer:
    def __init__(self):
        self.emitted = []

    async def emit(self, event, data, room=None):
        self.emitted.append((event, data, room))


@pytest.mark.asyncio
async def test_change_broadcast_names_the_domain_but_no_record(live_client, monkeypatch):
    server = RecordingServer()
    monkeypatch.setattr(websockets, "_sio_server", server)

    await handle_change({
        "type": "UPDATE",
        "table": "Result",
        "schema": "public",
        "record": {"id": 42, "score": 91},
        "old_record": {"id": 42},
    })

    assert server.emitted == [("invalidate", {"domain": "result", "type": "UPDATE"}, "result")]
