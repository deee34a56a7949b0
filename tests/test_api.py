import re

import pytest
from fastapi.testclient import TestClient

from dbedit.api.dependencies import get_definitions
from dbedit.core.db import get_connection
from dbedit.core.store import MemoryStore
from dbedit.main import app
from dbedit.services.registry import parse_definitions

from conftest import insert_user

DEFINITIONS = parse_definitions({
    "users": {
        "title": "Users",
        "table": "users",
        "cols": {
            "name": {"name": "Name"},
            "active": {"name": "Active", "type": "checkbox"},
        },
        "allow_add": True,
        "allow_edit": True,
        "allow_delete": True,
    },
    "broken": {
        "table": "users",
        "cols": {"missing": {}},
    },
    "misconfigured": {
        "table": "users",
        "cols": {"name": {"php": "not_registered"}},
    },
})

UID_PATTERN = re.compile(r"dbedit=([0-9a-f]{32})")


@pytest.fixture()
def app_overrides(engine, monkeypatch):
    def override_connection():
        with engine.connect() as conn:
            yield conn

    monkeypatch.setattr("dbedit.core.store._store", MemoryStore())
    monkeypatch.setattr("dbedit.main.check_connection", lambda: True)
    app.dependency_overrides[get_connection] = override_connection
    app.dependency_overrides[get_definitions] = lambda: DEFINITIONS
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def client(app_overrides):
    with TestClient(app) as client:
        yield client


def open_editor_page(client, url="/editors/users"):
    response = client.get(url)
    assert response.status_code == 200
    return response, UID_PATTERN.search(response.text).group(1)


def test_index_lists_editors(client):
    response = client.get("/editors")

    assert response.status_code == 200
    assert "/editors/users" in response.text
    assert ">Users</a>" in response.text


def test_root_redirects_to_index(client):
    response = client.get("/", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/editors"


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_unknown_editor_is_404(client):
    assert client.get("/editors/nope").status_code == 404


def test_session_cookie_is_set_once(client):
    first = client.get("/editors/users")
    assert "dbedit_session" in first.cookies

    second = client.get("/editors/users")
    assert "dbedit_session" not in second.cookies


def test_insert_and_view_flow(client):
    response, uid = open_editor_page(client)
    assert "<h1>Users</h1>" in response.text

    response = client.post(
        "/editors/users",
        data={"a": "i", "dbedit": uid, "users_name": "Alice"},
        follow_redirects=False
    )
    assert response.status_code == 303
    assert response.headers["location"] == f"/editors/users?updated=1&dbedit={uid}"

    response = client.get(response.headers["location"])
    assert "<td>Alice</td><td>No</td>" in response.text
    assert "Row updated" in response.text


def test_edit_and_delete_flow(client, engine):
    with engine.connect() as conn:
        user_id = insert_user(conn, name="Alice")
    _, uid = open_editor_page(client)

    form = client.get(f"/editors/users?a=e&id={user_id}&dbedit={uid}")
    assert 'name="users_name" value="Alice"' in form.text

    client.post("/editors/users", data={"a": "p", "id": str(user_id), "dbedit": uid, "users_name": "Alicia"})
    assert "<td>Alicia</td>" in client.get(f"/editors/users?dbedit={uid}").text

    response = client.post(
        "/editors/users", data={"a": "d", "id": str(user_id), "dbedit": uid}, follow_redirects=False
    )
    assert response.headers["location"] == f"/editors/users?dbedit={uid}"
    assert "Alicia" not in client.get(response.headers["location"]).text


def test_unknown_instance_redirects_to_fresh_editor(client):
    response = client.get(f"/editors/users?page=2&dbedit={'0' * 32}", follow_redirects=False)

    assert response.status_code == 303
    assert response.headers["location"] == "/editors/users?page=2"


def test_editors_are_private_to_a_session(app_overrides, client):
    _, uid = open_editor_page(client)

    with TestClient(app) as stranger:
        response = stranger.get(f"/editors/users?dbedit={uid}", follow_redirects=False)

    assert response.status_code == 303


def test_query_error_hidden_from_public_hosts(client):
    response = client.get("/editors/broken")

    assert response.status_code == 500
    assert response.text == ""


def test_query_error_shown_on_development_host(app_overrides):
    with TestClient(app, base_url="http://localhost") as client:
        response = client.get("/editors/broken")

    assert response.status_code == 500
    assert "users.missing" in response.text


def test_config_error_is_500(client, engine):
    with engine.connect() as conn:
        insert_user(conn, name="Alice")

    assert client.get("/editors/misconfigured").status_code == 500


def test_pages_render_through_templates(client):
    index = client.get("/editors")
    assert index.template.name == "index.html"
    assert index.context["request"].url.path == "/editors"

    page = client.get("/editors/users")
    assert page.template.name == "page.html"
    assert page.context["title"] == "Users"
    assert '<table id="users_table"' in page.text


def test_lifespan_logs_startup(app_overrides, caplog):
    caplog.set_level("INFO", logger="dbedit.main")

    with TestClient(app):
        pass

    assert "Starting dbedit" in caplog.text
    assert "Stopping dbedit" in caplog.text
