import pytest
from jose import jwt

from schoolboard.core.config import settings
from schoolboard.query.hydration import DehydratedState
from tests.helpers.asserts import api_call, assert_error_envelope


def test_list_page_carries_view_and_snapshot(client, auth_headers):
    response = api_call(client, "GET", "/lists/student", headers=auth_headers("parent"), params={"page": "1"})
    data = response.json()["data"]

    assert data["view"]["state"] == "table"
    assert [row["id"] for row in data["view"]["rows"]] == ["s2", "s1"]
    assert data["view"]["pagination"]["total_pages"] == 1
    assert data["view"]["can_mutate"] is False

    state = DehydratedState.model_validate(data["dehydrated_state"])
    assert len(state.queries) == 1
    assert state.queries[0].key[:2] == ["student", "list"]
    assert state.queries[0].key[2]["user_id"] == "p1"


def test_scoped_out_list_renders_the_empty_message(client, make_token):
    headers = {"Authorization": f"Bearer {make_token('s3', 'student')}"}
    response = api_call(client, "GET", "/lists/class", headers=headers)
    view = response.json()["data"]["view"]

    assert view["state"] == "empty"
    assert view["message"] == "No tienes una clase asignada."
    assert response.json()["data"]["dehydrated_state"]["queries"][0]["data"]["scope_empty"] == view["message"]


def test_search_and_filters_from_the_query_string(client, auth_headers):
    response = api_call(client, "GET", "/lists/teacher", headers=auth_headers("admin"), params={"classId": "2"})
    assert [row["id"] for row in response.json()["data"]["view"]["rows"]] == ["t3"]

    response = api_call(client, "GET", "/lists/lesson", headers=auth_headers("admin"), params={"search": "química"})
    assert [row["id"] for row in response.json()["data"]["view"]["rows"]] == [3]


def test_unknown_entity_is_not_found(client, auth_headers):
    response = client.get("/lists/course", headers=auth_headers("admin"))
    assert_error_envelope(response, 404, "NOT_FOUND")


@pytest.mark.parametrize("headers", [
    {},
    {"Authorization": "Bearer not-a-token"},
])
def test_missing_or_invalid_token_is_rejected(client, headers):
    response = client.get("/lists/student", headers=headers)
    body = assert_error_envelope(response, 401, "UNAUTHORIZED")
    assert body["path"].endswith("/lists/student")


def test_token_for_another_audience_is_rejected(client):
    token = jwt.encode(
        {"sub": "a1", "aud": "someone-else", "user_metadata": {"role": "admin"}},
        settings.JWT_SECRET,
        algorithm="HS256",
    )
    response = client.get("/lists/student", headers={"Authorization": f"Bearer {token}"})
    assert_error_envelope(response, 401, "UNAUTHORIZED")


def test_request_id_is_echoed(client, auth_headers):
    headers = {**auth_headers("admin"), "X-Request-ID": "req-123"}
    response = api_call(client, "GET", "/lists/event", headers=headers)
    assert response.headers["X-Request-ID"] == "req-123"


def test_detail_page(client, auth_headers):
    response = api_call(client, "GET", "/lists/student/s1", headers=auth_headers("parent"))
    view = response.json()["data"]["view"]
    assert view["state"] == "table"
    assert view["record"]["surname"] == "Pérez"

    response = api_call(client, "GET", "/lists/student/s4", headers=auth_headers("parent"))
    assert response.json()["data"]["view"]["state"] == "empty"


@pytest.mark.parametrize("role,entity,expected", [
    ("admin", "assignment", 201),
    ("teacher", "assignment", 201),
    ("admin", "student", 201),
    ("teacher", "student", 403),
    ("student", "assignment", 403),
    ("parent", "assignment", 403),
])
def test_create_permissions(client, auth_headers, role, entity, expected):
    response = client.post(f"/lists/{entity}", headers=auth_headers(role), json={"title": "Nueva", "lessonId": 1})
    assert response.status_code == expected, response.text
    if expected == 403:
        assert_error_envelope(response, 403, "FORBIDDEN")


def test_created_record_shows_up_in_the_list(client, auth_headers):
    headers = auth_headers("teacher")
    created = api_call(client, "POST", "/lists/exam", headers=headers, json={"title": "Recuperación", "lessonId": 2})
    assert created.status_code == 201
    new_id = created.json()["data"]["id"]

    response = api_call(client, "GET", "/lists/exam", headers=headers)
    assert new_id in [row["id"] for row in response.json()["data"]["view"]["rows"]]


def test_update_and_delete(client, auth_headers):
    headers = auth_headers("admin")

    response = api_call(client, "PATCH", "/lists/announcement/2", headers=headers, json={"title": "Reunión de padres"})
    assert response.json()["data"]["title"] == "Reunión de padres"

    response = api_call(client, "DELETE", "/lists/announcement/2", headers=headers)
    assert response.json()["data"] == {"deleted": True}

    response = api_call(client, "GET", "/lists/announcement/2", headers=headers)
    assert response.json()["data"]["view"]["state"] == "empty"


def test_update_of_a_missing_record(client, auth_headers):
    response = client.patch("/lists/assignment/99", headers=auth_headers("admin"), json={"title": "x"})
    assert_error_envelope(response, 404, "NOT_FOUND")


def test_body_must_be_an_object(client, auth_headers):
    response = client.post("/lists/assignment", headers=auth_headers("admin"), json=["title"])
    body = assert_error_envelope(response, 422, "VALIDATION_ERROR")
    assert body["error"]["details"]["validation_errors"]
