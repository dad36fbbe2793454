"""
Restore databases inside a running Business Central container.

The host side resolves the backup folder, translates it to the container's
view of the file system and hands a RestoreRequest to the restore agent in
the container (see :mod:`bchelper.restore_agent`).
"""

import logging
import os
from typing import Any, Callable, Dict, List, Optional

from .config import AppSettings, settings as default_settings
from .container import ContainerClient
from .errors import InvalidArgument
from .models import (
    DEFAULT_DATABASE_FOLDER,
    DEFAULT_SQL_TIMEOUT,
    RESTORE_COMMAND,
    AgentCommand,
    RestoreRequest,
    RestoreResult,
)
from .telemetry import trace, traced

logger = logging.getLogger(__name__)


class DatabaseRestorer:
    """Restores a folder of .bak files into a container's databases."""

    def __init__(
        self,
        app_settings: Optional[AppSettings] = None,
        container_client: Optional[ContainerClient] = None,
        progress_callback: Optional[Callable[[str, str, Dict[str, Any]], None]] = None,
    ):
        self.settings = app_settings or default_settings
        self.container_client = container_client or ContainerClient(self.settings.container)
        self.progress_callback = progress_callback

    def default_bak_folder(self, container_name: str) -> str:
        return os.path.join(self.settings.helper.extensions_root, container_name)

    @traced("restore-databases")
    def restore(
        self,
        container_name: str,
        bak_folder: Optional[str] = None,
        tenant: Optional[List[str]] = None,
        database_folder: str = DEFAULT_DATABASE_FOLDER,
        sql_timeout: int = DEFAULT_SQL_TIMEOUT,
    ) -> RestoreResult:
        """
        Restore databases in a container from .bak files.

        Args:
            container_name: Name of the running container
            bak_folder: Host folder with database.bak, or app.bak and <tenant>.bak
            tenant: Tenants to restore in a multitenant container, all when omitted
            database_folder: Folder inside the container for the database files
            sql_timeout: Timeout in seconds for each restore statement

        Returns:
            RestoreResult: Names of the restored databases

        Raises:
            InvalidArgument: If the container name is empty or the folder is not shared
            BackupNotFound: If an expected .bak file is missing
            ExternalToolFailure: For docker, service or SQL Server failures
        """
        if not container_name:
            raise InvalidArgument("Container name is required")

        host_folder = bak_folder or self.default_bak_folder(container_name)
        container_folder = self.container_client.container_path(container_name, host_folder)
        trace("Backup folder resolved", host_folder=host_folder, container_folder=container_folder)

        request = RestoreRequest(
            bak_folder=container_folder,
            tenant=tenant,
            database_folder=database_folder,
            sql_timeout=sql_timeout,
        )
        data = self.container_client.invoke_agent(
            container_name,
            AgentCommand(command=RESTORE_COMMAND, request=request.model_dump()),
            progress_callback=self.progress_callback,
        )

        result = RestoreResult(container_name=container_name, databases=data.get("databases", []))
        logger.info(f"Restored {', '.join(result.databases)} in container {container_name}")
        return result
