"""
Database restore agent.

Runs inside a Business Central container (``BCHELPER_MODE=agent``). It
reads one AgentCommand as JSON from STDIN, restores the requested databases
on the container's SQL Server and reports progress and the outcome as JSON
lines on STDOUT.
"""

import glob
import json
import logging
import ntpath
import os
import subprocess
import sys
import xml.etree.ElementTree as ET
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import pymssql
from pydantic import BaseModel, ValidationError

from .config import AppSettings, MSSQLSettings, ServiceSettings, settings as default_settings
from .errors import BackupNotFound, ExternalToolFailure, InvalidArgument
from .models import RESTORE_COMMAND, AgentCommand, RestoreRequest, output_message

logger = logging.getLogger(__name__)

DEFAULT_TENANT = "default"


class ServiceConfig(BaseModel):
    """Values of the service tier CustomSettings.config."""

    server_instance: str
    database_server: str
    database_instance: str = ""
    database_name: str
    multitenant: bool = False

    @classmethod
    def load(cls, path: str) -> "ServiceConfig":
        """Parse the ``<appSettings><add key=... value=.../>`` entries of a config file."""
        root = ET.parse(path).getroot()
        values = {
            node.get("key"): node.get("value", "")
            for node in root.iter("add")
            if node.get("key")
        }
        return cls(
            server_instance=values.get("ServerInstance", ""),
            database_server=values.get("DatabaseServer", "localhost"),
            database_instance=values.get("DatabaseInstance", ""),
            database_name=values.get("DatabaseName", ""),
            multitenant=values.get("Multitenant", "false").strip().lower() == "true",
        )

    @classmethod
    def discover(cls, pattern: str) -> "ServiceConfig":
        matches = sorted(glob.glob(pattern))
        if not matches:
            raise ExternalToolFailure(f"Service configuration not found: {pattern}")
        logger.info(f"Reading service configuration {matches[0]}")
        return cls.load(matches[0])


def _quote_name(name: str) -> str:
    return "[" + name.replace("]", "]]") + "]"


def _quote_literal(value: str) -> str:
    return value.replace("'", "''")


class DatabaseEngine:
    """SQL Server operations needed for a restore (exists, drop, create from backup)."""

    def __init__(
        self,
        database_server: str,
        database_instance: str = "",
        mssql_settings: Optional[MSSQLSettings] = None,
        timeout: int = 300,
    ):
        self.server = (
            f"{database_server}\\{database_instance}" if database_instance else database_server
        )
        self.mssql_settings = mssql_settings or MSSQLSettings()
        self.timeout = timeout

    @contextmanager
    def _cursor(self) -> Iterator[Any]:
        conn = None
        cursor = None
        try:
            # autocommit=True to avoid transaction issues with RESTORE operations
            conn = pymssql.connect(
                server=self.server,
                database="master",
                autocommit=True,
                timeout=self.timeout,
                **self.mssql_settings.get_connection_dict(),
            )
            cursor = conn.cursor(as_dict=True)
            yield cursor
        except pymssql.Error as e:
            raise ExternalToolFailure(f"SQL Server error on {self.server}: {str(e)}") from e
        finally:
            if cursor:
                cursor.close()
            if conn:
                conn.close()

    def database_exists(self, database_name: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute("SELECT name FROM sys.databases WHERE name = %s", (database_name,))
            return cursor.fetchone() is not None

    def drop_database(self, database_name: str) -> None:
        logger.info(f"Dropping database {database_name}")
        with self._cursor() as cursor:
            cursor.execute(
                f"ALTER DATABASE {_quote_name(database_name)} SET SINGLE_USER WITH ROLLBACK IMMEDIATE"
            )
            cursor.execute(f"DROP DATABASE {_quote_name(database_name)}")

    def list_tenants(self, app_database: str) -> List[str]:
        """Tenant ids registered in the application database."""
        with self._cursor() as cursor:
            cursor.execute(
                f"SELECT [TenantId] FROM {_quote_name(app_database)}.[dbo].[$ndo$tenants]"
            )
            return [row["TenantId"] for row in cursor.fetchall()]

    def create_database_from_backup(
        self, database_name: str, bak_file: str, destination_path: str
    ) -> List[str]:
        """
        Restore a backup file into a new database.

        Args:
            database_name: Name of the database to create
            bak_file: Backup file path as seen by SQL Server
            destination_path: Folder receiving the data and log files

        Returns:
            List[str]: Logical names of the restored files
        """
        with self._cursor() as cursor:
            cursor.execute("RESTORE FILELISTONLY FROM DISK = %s", (bak_file,))
            file_info = cursor.fetchall()
            if not file_info:
                raise ExternalToolFailure(f"No file information found in backup {bak_file}")

            # Build MOVE commands for restore
            move_commands = []
            file_list = []
            for file in file_info:
                logical_name = file.get("LogicalName")
                file_list.append(logical_name)

                ext = ".ldf" if file.get("Type") == "L" else ".mdf"
                physical_name = ntpath.join(destination_path, f"{database_name}_{logical_name}{ext}")
                move_commands.append(
                    f"MOVE N'{_quote_literal(logical_name)}' TO N'{_quote_literal(physical_name)}'"
                )

            move_clause = ",\n".join(move_commands)
            restore_sql = f"""
            RESTORE DATABASE {_quote_name(database_name)}
            FROM DISK = %s
            WITH RECOVERY,
            STATS = 10,
            {move_clause}
            """

            logger.info(f"Restoring database '{database_name}' with {len(file_list)} files")
            cursor.execute(restore_sql, (bak_file,))
            return file_list


class ServiceController:
    """Stops and starts the service tier instance."""

    def __init__(self, server_instance: str, service_settings: Optional[ServiceSettings] = None):
        self.server_instance = server_instance
        self.settings = service_settings or ServiceSettings()

    def stop(self) -> None:
        logger.info(f"Stopping service instance {self.server_instance}")
        self._run(self.settings.stop_command)

    def start(self) -> None:
        logger.info(f"Starting service instance {self.server_instance}")
        self._run(self.settings.start_command)

    def _run(self, template: List[str]) -> None:
        command = [part.format(instance=self.server_instance) for part in template]
        try:
            result = subprocess.run(command, capture_output=True, text=True, check=False)
        except OSError as e:
            raise ExternalToolFailure(f"Failed to run {command[0]}: {e}") from e
        if result.returncode != 0:
            raise ExternalToolFailure(
                f"{' '.join(command)} failed: {(result.stderr or result.stdout).strip()}"
            )


class DatabaseRestoreAgent:
    """Restores a BackupSet into the databases of the service tier."""

    def __init__(
        self,
        config: ServiceConfig,
        engine: DatabaseEngine,
        service: ServiceController,
        progress_callback: Optional[Callable[[str, str, Dict[str, Any]], None]] = None,
    ):
        self.config = config
        self.engine = engine
        self.service = service
        self.progress_callback = progress_callback or (lambda *args: None)

    def resolve_targets(self, tenant: Optional[List[str]] = None) -> List[Tuple[str, str]]:
        """Pairs of (backup name, database name) in restore order."""
        if not self.config.multitenant:
            return [("database", self.config.database_name)]

        if not tenant:
            tenant = self.engine.list_tenants(self.config.database_name) + [DEFAULT_TENANT]
        tenants = list(dict.fromkeys(tenant))
        return [("app", self.config.database_name)] + [(t, t) for t in tenants]

    def restore(self, request: RestoreRequest) -> List[str]:
        """
        Restore all targets of a request.

        A missing backup file aborts the sequence with the service left stopped.

        Returns:
            List[str]: Names of the restored databases
        """
        targets = self.resolve_targets(request.tenant)
        self.progress_callback(
            "processing",
            f"Stopping service instance {self.config.server_instance}",
            {"step": "stopping", "targets": [name for _, name in targets]},
        )
        self.service.stop()

        restored = []
        for bak_name, database_name in targets:
            bak_file = os.path.join(request.bak_folder, f"{bak_name}.bak")
            if not os.path.isfile(bak_file):
                raise BackupNotFound(f"No backup file {bak_file}")

            if self.engine.database_exists(database_name):
                self.progress_callback(
                    "processing",
                    f"Removing database {database_name}",
                    {"step": "dropping", "database": database_name},
                )
                self.engine.drop_database(database_name)

            self.progress_callback(
                "processing",
                f"Restoring {bak_name}.bak to {database_name}",
                {"step": "restoring", "database": database_name, "backup_file": bak_file},
            )
            os.makedirs(request.database_folder, exist_ok=True)
            self.engine.create_database_from_backup(
                database_name, bak_file, request.database_folder
            )
            restored.append(database_name)

        self.progress_callback(
            "processing",
            f"Starting service instance {self.config.server_instance}",
            {"step": "starting"},
        )
        self.service.start()
        return restored

    @classmethod
    def from_settings(
        cls,
        request: RestoreRequest,
        app_settings: Optional[AppSettings] = None,
        progress_callback: Optional[Callable[[str, str, Dict[str, Any]], None]] = None,
    ) -> "DatabaseRestoreAgent":
        app_settings = app_settings or default_settings
        config = ServiceConfig.discover(app_settings.service.config_path)
        engine = DatabaseEngine(
            config.database_server,
            config.database_instance,
            mssql_settings=app_settings.mssql,
            timeout=request.sql_timeout,
        )
        service = ServiceController(config.server_instance, app_settings.service)
        return cls(config, engine, service, progress_callback)


def process_command(command: AgentCommand) -> int:
    """
    Process a command received from the host.

    Returns:
        int: Exit code (0 for success, non-zero for error)
    """
    if command.command != RESTORE_COMMAND:
        output_message(
            "error",
            "failed",
            f"Unknown command: {command.command}",
            {"code": InvalidArgument.__name__},
        )
        return 1

    try:
        request = RestoreRequest.model_validate(command.request)
        agent = DatabaseRestoreAgent.from_settings(
            request,
            progress_callback=lambda status, msg, data: output_message(
                "progress", status, msg, data
            ),
        )
        databases = agent.restore(request)

        output_message(
            "result",
            "success",
            f"Restored {len(databases)} database(s)",
            {"databases": databases},
        )
        return 0

    except ValidationError as e:
        output_message("error", "failed", str(e), {"code": InvalidArgument.__name__})
        return 1
    except Exception as e:
        logger.exception("Error processing restore command")
        output_message("error", "failed", str(e), {"code": type(e).__name__})
        return 1


def main() -> int:
    """
    Main entry point for the restore agent.

    Reads a command from STDIN, processes it, and outputs the result to STDOUT.
    """
    command_str = sys.stdin.read().strip()
    if not command_str:
        output_message(
            "error", "failed", "Empty command received on STDIN", {"code": InvalidArgument.__name__}
        )
        return 1

    try:
        command = AgentCommand.model_validate(json.loads(command_str))
    except (json.JSONDecodeError, ValidationError):
        output_message(
            "error", "failed", "Invalid JSON command", {"code": InvalidArgument.__name__}
        )
        return 1

    return process_command(command)
