from __future__ import annotations

import ast
from pathlib import Path

import psycopg
import pytest

from collectors.postgres.connection import ConnectionConfig, PostgresConnection, rows_from_pgresult
from collectors.postgres.properties import extension_schema, get_postgres_properties
from statmon.exceptions.core import SamplingError
from tests.helpers.factories import FakeConnection


class FakePGresult:
    """Minimal text-format libpq result."""

    def __init__(self, columns, rows):
        self._columns = columns
        self._rows = rows
        self.nfields = len(columns)
        self.ntuples = len(rows)

    def fname(self, i):
        return self._columns[i].encode()

    def get_value(self, r, c):
        value = self._rows[r][c]
        return None if value is None else value.encode()


class FakeCursor:
    def __init__(self, owner):
        self.owner = owner
        self.pgresult = None

    def execute(self, query):
        if self.owner.fail:
            raise psycopg.OperationalError("server closed the connection unexpectedly")
        self.owner.executed.append(query)
        self.pgresult = self.owner.result

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


class FakeInfo:
    encoding = "utf-8"


class FakePsycopgConnection:
    def __init__(self, result, fail=False):
        self.result = result
        self.fail = fail
        self.executed = []
        self.closed = False
        self.info = FakeInfo()

    def cursor(self):
        return FakeCursor(self)

    def close(self):
        self.closed = True


def test_rows_from_pgresult_keeps_text_and_nulls() -> None:
    res = FakePGresult(
        ["id", "name", "v1", "v2"],
        [("1", "one", "10", "11.1"), ("3", None, None, None)],
    )
    columns, rows = rows_from_pgresult(res, "utf-8")
    assert columns == ["id", "name", "v1", "v2"]
    assert rows == [("1", "one", "10", "11.1"), ("3", None, None, None)]


def test_rows_from_pgresult_without_result() -> None:
    assert rows_from_pgresult(None, "utf-8") == ([], [])


def test_connection_config_kwargs_skip_unset() -> None:
    kwargs = ConnectionConfig(host="db", dbname="app").kwargs()
    assert kwargs == {"host": "db", "dbname": "app", "connect_timeout": 10, "application_name": "statmon"}


def test_postgres_connection_fetch(monkeypatch) -> None:
    fake = FakePsycopgConnection(FakePGresult(["x"], [("1",)]))
    captured = {}

    def connect(**kwargs):
        captured.update(kwargs)
        return fake

    monkeypatch.setattr(psycopg, "connect", connect)
    with PostgresConnection(ConnectionConfig(port=5433)) as conn:
        assert conn.fetch("SELECT 1 AS x") == (["x"], [("1",)])

    assert captured["autocommit"] is True
    assert captured["port"] == 5433
    assert fake.executed == ["SELECT 1 AS x"]
    assert fake.closed


def test_postgres_connection_query_failure(monkeypatch) -> None:
    fake = FakePsycopgConnection(None, fail=True)
    monkeypatch.setattr(psycopg, "connect", lambda **kwargs: fake)
    conn = PostgresConnection()
    with pytest.raises(SamplingError, match="server closed"):
        conn.fetch("SELECT 1")


def test_postgres_connection_connect_failure(monkeypatch) -> None:
    def connect(**kwargs):
        raise psycopg.OperationalError("connection refused")

    monkeypatch.setattr(psycopg, "connect", connect)
    with pytest.raises(SamplingError) as excinfo:
        PostgresConnection(ConnectionConfig(host="nowhere"))
    assert excinfo.value.stage == "sampling"


def _properties_conn(props_row, pgss_rows):
    conn = FakeConnection({})
    results = {"props": props_row, "pgss": pgss_rows}

    def fetch(query):
        conn.queries.append(query)
        if "pg_extension" in query:
            return ["nspname"], results["pgss"]
        return ["a", "b", "c", "d", "e"], results["props"]

    conn.fetch = fetch
    return conn


def test_get_postgres_properties() -> None:
    conn = _properties_conn([("16.2", "160002", "f", "off", "2024-03-01 10:00:00+00")], [("public",)])
    props = get_postgres_properties(conn)
    assert props.version == "16.2"
    assert props.version_num == 160002
    assert not props.in_recovery
    assert props.track_commit_timestamp == "off"
    assert props.pgss_schema == "public"
    assert "pg_stat_statements" in conn.queries[-1]


def test_properties_without_statements_extension() -> None:
    conn = _properties_conn([("16.2", "160002", "t", "on", "2024-03-01 10:00:00+00")], [])
    props = get_postgres_properties(conn)
    assert props.in_recovery
    assert props.pgss_schema == ""


@pytest.mark.parametrize(
    "rows",
    [
        [],
        [("16.2", "160002", "f", "off")],
        [("16.2", "sixteen", "f", "off", "x")],
    ],
)
def test_properties_reject_bad_result(rows) -> None:
    with pytest.raises(SamplingError):
        get_postgres_properties(_properties_conn(rows, []))


def test_extension_schema_quotes_name() -> None:
    conn = _properties_conn([], [(None,)])
    assert extension_schema(conn, "it's") == ""
    assert "'it''s'" in conn.queries[-1]


def test_collectors_import_only_errors_and_logging_from_statmon() -> None:
    import collectors

    allowed = ("statmon.exceptions", "statmon.utils")
    root = Path(collectors.__file__).parent
    for path in root.rglob("*.py"):
        tree = ast.parse(path.read_text())
        for node in ast.walk(tree):
            if isinstance(node, ast.ImportFrom) and node.module:
                names = [node.module]
            elif isinstance(node, ast.Import):
                names = [alias.name for alias in node.names]
            else:
                continue
            for name in names:
                if name == "statmon" or name.startswith("statmon."):
                    assert name.startswith(allowed), f"{path.name} imports {name}"
