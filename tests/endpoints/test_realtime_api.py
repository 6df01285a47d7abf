from schoolboard.query.client import QueryClient
from schoolboard.query.keys import query_keys
from schoolboard.realtime.websockets import register_live_client, unregister_live_client
from tests.helpers.asserts import api_call, assert_error_envelope

WEBHOOK_HEADERS = {"X-Webhook-Secret": "test-webhook-secret"}


def test_change_webhook_invalidates_live_clients(client):
    live = register_live_client(QueryClient())
    try:
        student_key = query_keys["student"].list({"page": 1})
        teacher_key = query_keys["teacher"].list({"page": 1})
        live.set_query_data(student_key, {"rows": [], "count": 0})
        live.set_query_data(teacher_key, {"rows": [], "count": 0})

        response = api_call(client, "POST", "/realtime/changes", headers=WEBHOOK_HEADERS, json={
            "type": "UPDATE",
            "table": "Student",
            "schema": "public",
            "record": {"id": "s1", "name": "Ana María"},
            "old_record": {"id": "s1"},
        })

        assert response.json()["data"] == {"domain": "student", "handlers": 1}
        assert live.get_entry(student_key).state.is_invalidated
        assert not live.get_entry(teacher_key).state.is_invalidated
    finally:
        unregister_live_client(live)


def test_unknown_tables_are_accepted_and_ignored(client):
    response = api_call(client, "POST", "/realtime/changes", headers=WEBHOOK_HEADERS, json={"type": "INSERT", "table": "AuditLog"})
    assert response.json()["data"]["domain"] is None


def test_change_type_is_validated(client):
    response = client.post(
        "/realtime/changes", headers=WEBHOOK_HEADERS, json={"type": "TRUNCATE", "table": "Student"}
    )
    assert_error_envelope(response, 422, "VALIDATION_ERROR")


def test_change_without_secret_is_rejected(client):
    live = register_live_client(QueryClient())
    try:
        result_key = query_keys["result"].list({"page": 1})
        live.set_query_data(result_key, {"rows": [], "count": 0})

        response = client.post("/realtime/changes", json={"type": "DELETE", "table": "Result", "record": {"id": 1}})

        assert_error_envelope(response, 401, "UNAUTHORIZED")
        assert not live.get_entry(result_key).state.is_invalidated
    finally:
        unregister_live_client(live)


def test_change_with_wrong_secret_is_rejected(client):
    response = client.post(
        "/realtime/changes",
        headers={"X-Webhook-Secret": "guessed"},
        json={"type": "INSERT", "table": "Student"},
    )
    assert_error_envelope(response, 401, "UNAUTHORIZED")
