import pytest

from dbedit.core.exceptions import EditorQueryError, EditorRedirect
from dbedit.services.editor import parse_row_id

from conftest import fetch_user, insert_user


def post(follow_up, editor, form, prefix="u_", **kwargs):
    """Submit a form and return where the editor redirected to"""
    with pytest.raises(EditorRedirect) as exc_info:
        follow_up(editor, method="POST", form=form, **kwargs).execute(prefix)
    return exc_info.value.location


def view(follow_up, editor, query="", **kwargs):
    url = f"/users?dbedit={editor.uid}{query}"
    return str(follow_up(editor, url=url, **kwargs).execute("u_"))


@pytest.mark.parametrize("value,expected", [
    ("5", 5),
    ("0012", 12),
    ("", None),
    ("5a", None),
    ("-1", None),
    (None, None),
    (7, 7),
])
def test_parse_row_id(value, expected):
    assert parse_row_id(value) == expected


def test_insert_then_view(new_editor, follow_up, conn):
    editor = new_editor()

    location = post(follow_up, editor, {"a": "i", "u_name": "Alice"})

    assert location == f"/users?updated=1&dbedit={editor.uid}"
    html = view(follow_up, editor, "&updated=1")
    assert "<td>Alice</td><td>No</td>" in html
    assert '<p class="u_msg">Row updated</p>' in html
    assert 'id="u_row-1" class="u_editable"' in html
    assert fetch_user(conn, 1)["active"] == 0


def test_insert_with_checked_checkbox(new_editor, follow_up, conn):
    editor = new_editor()
    post(follow_up, editor, {"a": "i", "u_name": "Bob", "u_active": "1"})

    assert fetch_user(conn, 1)["active"] == 1
    assert "<td>Bob</td><td>Yes</td>" in view(follow_up, editor)


def test_view_lists_headers_links_and_add(new_editor, follow_up, conn):
    editor = new_editor()
    insert_user(conn, name="Alice")

    html = view(follow_up, editor)

    assert "<th>Name</th><th>Active</th>" in html
    assert f"a=e&amp;id=1&amp;dbedit={editor.uid}" in html
    assert f"a=dc&amp;id=1&amp;dbedit={editor.uid}" in html
    assert f'<div class="u_add u_action_v"><a href="/users?a=a&amp;dbedit={editor.uid}">Add</a></div>' in html


def test_view_keeps_callers_query_parameters(new_editor, follow_up, conn):
    editor = new_editor()
    insert_user(conn, name="Alice")

    html = str(follow_up(editor, url=f"/users?team=4&dbedit={editor.uid}").execute("u_"))

    assert f"/users?a=e&amp;id=1&amp;team=4&amp;dbedit={editor.uid}" in html


def test_view_applies_where_and_order(new_editor, follow_up, conn):
    editor = new_editor(where="users.active = 1")
    editor.set_order("users.name DESC")
    insert_user(conn, name="Anna", active=1)
    insert_user(conn, name="Zoe", active=1)
    insert_user(conn, name="Hidden", active=0)

    html = view(follow_up, editor)

    assert "Hidden" not in html
    assert html.index("Zoe") < html.index("Anna")


def test_view_without_permissions_has_no_links(new_editor, follow_up, conn):
    editor = new_editor()
    insert_user(conn, name="Alice")
    restored = follow_up(editor)
    restored.allow_add(False)
    restored.allow_edit(False)
    restored.allow_delete(False)

    html = str(restored.execute("u_"))

    assert 'class="u_noteditable"' in html
    assert "u_del-col" not in html
    assert "u_add" not in html


def test_joined_column_is_displayed(new_editor, follow_up, conn):
    conn.exec_driver_sql("INSERT INTO teams (id, title) VALUES (3, 'Ops')")
    conn.commit()
    insert_user(conn, name="Alice", team_id=3)
    editor = new_editor(cols={
        "name": {},
        "teams.title": {"name": "Team", "tables": [["teams", "teams.id = users.team_id"]]},
    })

    html = view(follow_up, editor)
    assert "<td>Alice</td><td>Ops</td>" in html

    form = view(follow_up, editor, "&a=e&id=1")
    assert 'name="u_teams.title"' not in form


def test_left_join_keeps_unmatched_rows(new_editor, follow_up, conn):
    insert_user(conn, name="Loner")
    editor = new_editor(cols={
        "name": {},
        "t.title": {"tables": [["teams", "t.id = users.team_id", "t", "LEFT"]]},
    })

    assert "<td>Loner</td><td></td>" in view(follow_up, editor)


def test_edit_form_shows_row(new_editor, follow_up, conn):
    insert_user(conn, name="Alice", active=1)
    editor = new_editor()

    html = view(follow_up, editor, "&a=e&id=1")

    assert '<form id="u_form" method="post" action="/users" class="u_action_e">' in html
    assert 'id="u_name" name="u_name" value="Alice"' in html
    assert 'checked="checked"' in html
    assert f'<input type="hidden" name="dbedit" value="{editor.uid}" />' in html
    assert '<input type="hidden" name="id" value="1" />' in html
    assert 'id="u_submit" name="a" value="p">Edit</button>' in html


def test_edit_without_valid_id_falls_back_to_view(new_editor, follow_up, conn):
    insert_user(conn, name="Alice")
    editor = new_editor()

    for query in ("&a=e", "&a=e&id=1x", "&a=e&id="):
        html = view(follow_up, editor, query)
        assert 'id="u_table" class="u_action_v"' in html


def test_edit_refused_by_row_condition(new_editor, follow_up, conn):
    insert_user(conn, name="Alice", active=0)
    editor = new_editor(edit_condition="users.active = 1")

    assert view(follow_up, editor, "&a=e&id=1") == ""
    assert 'class="u_noteditable"' in view(follow_up, editor)


def test_add_form_uses_defaults(new_editor, follow_up):
    editor = new_editor(cols={"name": {"default": "New user"}, "role": {"constraint": "staff"}})

    html = view(follow_up, editor, "&a=a")

    assert 'value="New user"' in html
    assert "u_role" not in html
    assert 'name="a" value="i">Add</button>' in html
    assert 'name="id"' not in html


def test_post_updates_row(new_editor, follow_up, conn):
    user_id = insert_user(conn, name="Alice", active=1)
    editor = new_editor()

    location = post(follow_up, editor, {"a": "p", "id": str(user_id), "u_name": "Alicia"})

    assert location == f"/users?updated=1&dbedit={editor.uid}"
    row = fetch_user(conn, user_id)
    assert row["name"] == "Alicia"
    assert row["active"] == 0


def test_post_ignores_fields_not_in_config(new_editor, follow_up, conn):
    user_id = insert_user(conn, name="Alice", role="staff")
    editor = new_editor()

    post(follow_up, editor, {"a": "p", "id": str(user_id), "u_name": "A", "u_role": "admin", "role": "admin"})

    assert fetch_user(conn, user_id)["role"] == "staff"


def test_post_refused_by_row_condition(new_editor, follow_up, conn):
    user_id = insert_user(conn, name="Alice", active=0)
    editor = new_editor(edit_condition="users.active = 1")

    location = post(follow_up, editor, {"a": "p", "id": str(user_id), "u_name": "Mallory"})

    assert location == f"/users?updated=0&dbedit={editor.uid}"
    assert fetch_user(conn, user_id)["name"] == "Alice"


def test_column_edit_predicate_is_checked_on_post(new_editor, follow_up, conn):
    user_id = insert_user(conn, name="Alice", active=0)
    editor = new_editor(cols={
        "name": {"allow_edit": "active = 1"},
        "email": {},
    })

    form = view(follow_up, editor, f"&a=e&id={user_id}")
    assert 'disabled="disabled" type="text" id="u_name"' in form

    post(follow_up, editor, {"a": "p", "id": str(user_id), "u_name": "Mallory", "u_email": "a@b.c"})

    row = fetch_user(conn, user_id)
    assert row["name"] == "Alice"
    assert row["email"] == "a@b.c"


def test_post_without_id_redirects_to_view(new_editor, follow_up, conn):
    insert_user(conn, name="Alice")
    editor = new_editor()

    location = post(follow_up, editor, {"a": "p", "u_name": "Nobody"})

    assert location == f"/users?dbedit={editor.uid}"
    assert fetch_user(conn, 1)["name"] == "Alice"


def test_post_writes_other_columns(new_editor, follow_up, conn):
    user_id = insert_user(conn, name="Alice")
    editor = new_editor()

    restored = follow_up(editor, method="POST", form={"a": "p", "id": str(user_id), "u_name": "Alicia"})
    restored.set_other_cols({
        "created": {"type": "datetime", "val": "NOW()"},
        "role": {"val": "editor"},
    })
    with pytest.raises(EditorRedirect):
        restored.execute("u_")

    row = fetch_user(conn, user_id)
    assert row["role"] == "editor"
    assert row["created"] is not None


def test_insert_forces_constraint_values(new_editor, follow_up, conn):
    editor = new_editor(cols={"name": {}, "role": {"constraint": "staff"}})
    insert_user(conn, name="Other team", role="admin")

    post(follow_up, editor, {"a": "i", "u_name": "Alice", "u_role": "admin"})

    assert fetch_user(conn, 2)["role"] == "staff"
    html = view(follow_up, editor)
    assert "Alice" in html
    assert "Other team" not in html


def test_constraint_limits_edit_and_delete(new_editor, follow_up, conn):
    other_id = insert_user(conn, name="Other team", role="admin")
    editor = new_editor(cols={"name": {}, "role": {"constraint": "staff"}})

    assert view(follow_up, editor, f"&a=e&id={other_id}") == ""
    post(follow_up, editor, {"a": "p", "id": str(other_id), "u_name": "Hijacked"})
    post(follow_up, editor, {"a": "d", "id": str(other_id)})

    assert fetch_user(conn, other_id)["name"] == "Other team"


def test_insert_refused_without_permission(new_editor, follow_up, conn):
    editor = new_editor()
    restored = follow_up(editor, method="POST", form={"a": "i", "u_name": "Alice"})
    restored.allow_add(False)

    with pytest.raises(EditorRedirect) as exc_info:
        restored.execute("u_")

    assert exc_info.value.location == f"/users?updated=0&dbedit={editor.uid}"
    assert fetch_user(conn, 1) is None


def test_insert_parses_numbers_and_dates(new_editor, follow_up, conn):
    editor = new_editor(cols={
        "name": {},
        "team_id": {"type": "number"},
        "created": {"type": "date", "input_date": "%d/%m/%Y"},
    })

    post(follow_up, editor, {"a": "i", "u_name": "Alice", "u_team_id": "7", "u_created": "05/03/2024"})

    row = fetch_user(conn, 1)
    assert row["team_id"] == 7
    assert row["created"] == "2024-03-05"


def test_delete_confirm_then_delete(new_editor, follow_up, conn):
    user_id = insert_user(conn, name="Alice")
    editor = new_editor()

    html = view(follow_up, editor, f"&a=dc&id={user_id}")
    assert "<tr><td>Name</td><td>Alice</td></tr>" in html
    assert '<button type="submit" name="a" value="d">Delete</button>' in html
    assert 'class="u_action_dc"' in html

    location = post(follow_up, editor, {"a": "d", "id": str(user_id)})

    assert location == f"/users?dbedit={editor.uid}"
    assert fetch_user(conn, user_id) is None


def test_delete_condition(new_editor, follow_up, conn):
    keep_id = insert_user(conn, name="Active", active=1)
    drop_id = insert_user(conn, name="Inactive", active=0)
    editor = new_editor(delete_condition="active = 0")

    html = view(follow_up, editor)
    assert f"a=dc&amp;id={keep_id}&amp;" not in html
    assert f"a=dc&amp;id={drop_id}&amp;" in html
    assert view(follow_up, editor, f"&a=dc&id={keep_id}") == ""

    post(follow_up, editor, {"a": "d", "id": str(keep_id)})
    post(follow_up, editor, {"a": "d", "id": str(drop_id)})

    assert fetch_user(conn, keep_id) is not None
    assert fetch_user(conn, drop_id) is None


def test_delete_confirm_without_id_renders_view(new_editor, follow_up, conn):
    editor = new_editor()
    assert '<table id="u_table">' in view(follow_up, editor, "&a=dc")


def test_unknown_action_renders_nothing(new_editor, follow_up):
    assert view(follow_up, new_editor(), "&a=explode") == ""


def test_action_can_be_forced_by_caller(new_editor, follow_up, conn):
    insert_user(conn, name="Alice")
    editor = new_editor()

    html = str(follow_up(editor).execute("u_", action="e", row_id=1))

    assert 'value="Alice"' in html


def test_outer_classes_are_extended(new_editor, follow_up):
    editor = new_editor()
    restored = follow_up(editor)
    restored.outer_classes["v"] = "wide"

    assert 'class="wide u_action_v"' in str(restored.execute("u_"))


def test_custom_html_snippets(new_editor, follow_up, conn):
    insert_user(conn, name="Alice")
    editor = new_editor()
    restored = follow_up(editor)
    restored.add_html = '<button onclick="go(\'[+add_url+]\')">New</button>'
    restored.delete_html = "&#x2716;"

    html = str(restored.execute("u_"))

    assert f"<button onclick=\"go('/users?a=a&amp;dbedit={editor.uid}')\">New</button>" in html
    assert "&#x2716;</a>" in html


def test_debug_appends_sql_log(new_editor, follow_up):
    editor = new_editor()
    restored = follow_up(editor)
    restored.debug = True

    html = str(restored.execute("u_"))

    assert "<pre>SELECT users.id AS dbedit_primary_key" in html


def test_query_errors_carry_sql(new_editor, follow_up):
    editor = new_editor(cols={"missing": {}})

    with pytest.raises(EditorQueryError) as exc_info:
        follow_up(editor).execute("u_")

    assert "users.missing" in exc_info.value.sql
    assert "missing" in exc_info.value.message


def test_formatters_apply_in_view(new_editor, follow_up, conn):
    insert_user(conn, name="alice")
    editor = new_editor(cols={"name": {"php": "upper"}})

    def upper(pk, row, suffix, field, col, charset):
        return row["name"].upper()

    html = view(follow_up, editor, formatters={"upper": upper})
    assert "<td>ALICE</td>" in html


def test_post_keeps_extra_checkbox_value(new_editor, follow_up, conn):
    user_id = insert_user(conn, name="Alice", active=1)
    editor = new_editor(cols={"name": {}, "active": {"type": "checkbox", "extra": True}})

    form = view(follow_up, editor, f"&a=e&id={user_id}")
    assert "u_active" not in form

    post(follow_up, editor, {"a": "p", "id": str(user_id), "u_name": "Alicia"})

    row = fetch_user(conn, user_id)
    assert row["name"] == "Alicia"
    assert row["active"] == 1


def test_insert_leaves_extra_checkbox_to_database_default(new_editor, follow_up, conn):
    conn.exec_driver_sql("CREATE TABLE flags (id INTEGER PRIMARY KEY, name TEXT, enabled INTEGER DEFAULT 1)")
    conn.commit()
    editor = new_editor(cols={"name": {}, "enabled": {"type": "checkbox", "extra": True}})
    editor.state.table = "flags"
    editor.save()

    post(follow_up, editor, {"a": "i", "u_name": "beta"})

    assert conn.exec_driver_sql("SELECT enabled FROM flags").scalar() == 1
