"""SQL Server statements and service commands issued by the restore agent."""

import subprocess

import pymssql
import pytest

from bchelper import restore_agent
from bchelper.config import ServiceSettings
from bchelper.errors import ExternalToolFailure
from bchelper.restore_agent import DatabaseEngine, ServiceController

FILE_LIST = [
    {"LogicalName": "Demo Database BC (17-0)", "Type": "D"},
    {"LogicalName": "Demo Database BC (17-0)_Log", "Type": "L"},
]


class FakeCursor:
    def __init__(self, connection):
        self.connection = connection
        self.rows = []

    def execute(self, sql, params=None):
        self.connection.executed.append((" ".join(sql.split()), params))
        if self.connection.error:
            raise self.connection.error
        self.rows = list(self.connection.results.pop(0)) if self.connection.results else []

    def fetchone(self):
        return self.rows[0] if self.rows else None

    def fetchall(self):
        return self.rows

    def close(self):
        self.connection.cursor_closed = True


class FakeConnection:
    def __init__(self, results=(), error=None):
        self.results = list(results)
        self.error = error
        self.executed = []
        self.kwargs = {}
        self.closed = False
        self.cursor_closed = False

    def cursor(self, as_dict=False):
        assert as_dict
        return FakeCursor(self)

    def close(self):
        self.closed = True


@pytest.fixture
def connection(monkeypatch):
    conn = FakeConnection()

    def connect(**kwargs):
        conn.kwargs = kwargs
        return conn

    monkeypatch.setattr(restore_agent.pymssql, "connect", connect)
    return conn


def test_connects_to_master_of_named_instance(connection) -> None:
    DatabaseEngine("localhost", "SQLEXPRESS", timeout=60).database_exists("CRONUS")

    assert connection.kwargs["server"] == "localhost\\SQLEXPRESS"
    assert connection.kwargs["database"] == "master"
    assert connection.kwargs["autocommit"] is True
    assert connection.kwargs["timeout"] == 60
    assert connection.closed and connection.cursor_closed


def test_database_exists(connection) -> None:
    connection.results = [[{"name": "CRONUS"}], []]
    engine = DatabaseEngine("localhost")

    assert engine.database_exists("CRONUS") is True
    assert engine.database_exists("missing") is False
    assert connection.executed[0] == ("SELECT name FROM sys.databases WHERE name = %s", ("CRONUS",))


def test_create_database_from_backup_moves_files(connection) -> None:
    connection.results = [FILE_LIST, []]

    logical = DatabaseEngine("localhost").create_database_from_backup(
        "CRONUS", "c:\\bak\\database.bak", "c:\\databases"
    )

    assert logical == ["Demo Database BC (17-0)", "Demo Database BC (17-0)_Log"]
    assert connection.executed[0] == ("RESTORE FILELISTONLY FROM DISK = %s", ("c:\\bak\\database.bak",))
    sql, params = connection.executed[1]
    assert params == ("c:\\bak\\database.bak",)
    assert sql.startswith("RESTORE DATABASE [CRONUS] FROM DISK = %s WITH RECOVERY, STATS = 10,")
    assert (
        "MOVE N'Demo Database BC (17-0)' TO N'c:\\databases\\CRONUS_Demo Database BC (17-0).mdf'" in sql
    )
    assert (
        "MOVE N'Demo Database BC (17-0)_Log' TO N'c:\\databases\\CRONUS_Demo Database BC (17-0)_Log.ldf'"
        in sql
    )


def test_create_database_from_backup_quotes_names(connection) -> None:
    connection.results = [[{"LogicalName": "O'Brien", "Type": "D"}], []]

    DatabaseEngine("localhost").create_database_from_backup("my]db", "c:\\bak\\t.bak", "c:\\db")

    sql, _ = connection.executed[1]
    assert "RESTORE DATABASE [my]]db]" in sql
    assert "MOVE N'O''Brien' TO N'c:\\db\\my]db_O''Brien.mdf'" in sql


def test_create_database_from_empty_backup_fails(connection) -> None:
    connection.results = [[]]

    with pytest.raises(ExternalToolFailure):
        DatabaseEngine("localhost").create_database_from_backup("CRONUS", "c:\\bak\\x.bak", "c:\\db")

    assert len(connection.executed) == 1
    assert connection.closed


def test_drop_database_forces_single_user(connection) -> None:
    DatabaseEngine("localhost").drop_database("default")

    assert [sql for sql, _ in connection.executed] == [
        "ALTER DATABASE [default] SET SINGLE_USER WITH ROLLBACK IMMEDIATE",
        "DROP DATABASE [default]",
    ]


def test_list_tenants_reads_tenant_table(connection) -> None:
    connection.results = [[{"TenantId": "tenant1"}, {"TenantId": "tenant2"}]]

    assert DatabaseEngine("localhost").list_tenants("CRONUS") == ["tenant1", "tenant2"]
    assert connection.executed[0][0] == "SELECT [TenantId] FROM [CRONUS].[dbo].[$ndo$tenants]"


def test_connection_error_is_external_tool_failure(monkeypatch) -> None:
    def connect(**kwargs):
        raise pymssql.OperationalError("Login failed")

    monkeypatch.setattr(restore_agent.pymssql, "connect", connect)

    with pytest.raises(ExternalToolFailure, match="Login failed"):
        DatabaseEngine("localhost").database_exists("CRONUS")


def test_statement_error_is_external_tool_failure(connection) -> None:
    connection.error = pymssql.OperationalError("Exclusive access could not be obtained")

    with pytest.raises(ExternalToolFailure):
        DatabaseEngine("localhost").drop_database("CRONUS")

    assert connection.closed


def fake_run(calls, returncode=0, stderr=""):
    def run(command, **kwargs):
        calls.append(command)
        return subprocess.CompletedProcess(command, returncode, "", stderr)

    return run


def test_service_controller_stops_and_starts_instance(monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(restore_agent.subprocess, "run", fake_run(calls))
    controller = ServiceController("BC", ServiceSettings())

    controller.stop()
    controller.start()

    assert calls == [
        ["net", "stop", "MicrosoftDynamicsNavServer$BC"],
        ["net", "start", "MicrosoftDynamicsNavServer$BC"],
    ]


def test_service_controller_failure(monkeypatch) -> None:
    calls = []
    monkeypatch.setattr(
        restore_agent.subprocess, "run", fake_run(calls, returncode=2, stderr="service not found")
    )

    with pytest.raises(ExternalToolFailure, match="service not found"):
        ServiceController("BC", ServiceSettings()).stop()


def test_service_controller_missing_program(monkeypatch) -> None:
    def run(command, **kwargs):
        raise FileNotFoundError(command[0])

    monkeypatch.setattr(restore_agent.subprocess, "run", run)

    with pytest.raises(ExternalToolFailure):
        ServiceController("BC", ServiceSettings()).start()
