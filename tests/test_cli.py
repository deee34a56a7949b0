import orjson
import pytest

from dbedit import cli

from conftest import insert_user


@pytest.fixture()
def editors_file(tmp_path):
    def write(definitions):
        path = tmp_path / "editors.json"
        path.write_bytes(orjson.dumps(definitions))
        return str(path)

    return write


def test_check_runs_each_editor(engine, conn, editors_file, monkeypatch, capsys):
    monkeypatch.setattr(cli, "get_engine", lambda: engine)
    insert_user(conn, name="Alice")
    path = editors_file({"users": {"table": "users", "cols": {"name": {}}}})

    assert cli.main(["check", "--file", path]) == 0
    assert "users: OK (1 rows in users)" in capsys.readouterr().out


def test_check_reports_failures(engine, editors_file, monkeypatch, capsys):
    monkeypatch.setattr(cli, "get_engine", lambda: engine)
    path = editors_file({
        "users": {"table": "users", "cols": {"name": {}}},
        "broken": {"table": "users", "cols": {"missing": {}}},
    })

    assert cli.main(["check", "--file", path]) == 1
    out = capsys.readouterr().out
    assert "users: OK" in out
    assert "broken: FAILED" in out


def test_check_rejects_invalid_file(editors_file, capsys):
    path = editors_file({"users": {"cols": {}}})

    assert cli.main(["check", "--file", path]) == 1
    assert "Invalid editors file" in capsys.readouterr().out


def test_no_command_prints_help(capsys):
    assert cli.main([]) == 1
    assert "serve" in capsys.readouterr().out
