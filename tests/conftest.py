import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from dbedit.core.request import EditorRequest
from dbedit.core.store import MemoryStore
from dbedit.services.instances import init_editor

USERS_COLS = {
    "name": {"name": "Name"},
    "active": {"name": "Active", "type": "checkbox", "checkbox_value_html": {0: "No", 1: "Yes"}},
}


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE users ("
            "id INTEGER PRIMARY KEY AUTOINCREMENT, "
            "name TEXT, "
            "email TEXT, "
            "active INTEGER NOT NULL DEFAULT 0, "
            "role TEXT, "
            "team_id INTEGER, "
            "created TEXT)"
        ))
        conn.execute(text("CREATE TABLE teams (id INTEGER PRIMARY KEY, title TEXT)"))
    yield engine
    engine.dispose()


@pytest.fixture()
def conn(engine):
    with engine.connect() as conn:
        yield conn


@pytest.fixture()
def store():
    return MemoryStore().scoped("session-1")


def make_request(url="/users", method="GET", form=None):
    return EditorRequest.from_url(url, method=method, form=form)


def insert_user(conn, **values):
    names = ", ".join(values)
    placeholders = ", ".join(f":{name}" for name in values)
    result = conn.execute(text(f"INSERT INTO users ({names}) VALUES ({placeholders})"), values)
    conn.commit()
    return result.lastrowid


def fetch_user(conn, user_id):
    return conn.execute(text("SELECT * FROM users WHERE id = :id"), {"id": user_id}).mappings().first()


@pytest.fixture()
def new_editor(conn, store):
    """Factory for an editor created on a first request, with every permission granted"""

    def factory(cols=None, where=None, url="/users", **conditions):
        editor = init_editor(conn, store, make_request(url), "users", "id", cols or USERS_COLS, where)
        editor.allow_add(True)
        editor.allow_edit(True, conditions.get("edit_condition"))
        editor.allow_delete(True, conditions.get("delete_condition"))
        return editor

    return factory


@pytest.fixture()
def follow_up(conn, store):
    """Restore an editor on a later request"""

    def factory(editor, url=None, method="GET", form=None, formatters=None):
        url = url or f"/users?dbedit={editor.uid}"
        if form is not None:
            form = dict(form, dbedit=editor.uid)
        return init_editor(
            conn, store, make_request(url, method, form), "users", "id", {}, formatters=formatters
        )

    return factory
