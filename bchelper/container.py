"""
Docker CLI adapter.

Runs the restore agent inside a container with ``docker exec`` and
translates host paths to the paths the container sees through its bind
mounts.
"""

import json
import logging
import re
import subprocess
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from .config import ContainerSettings
from .errors import ExternalToolFailure, InvalidArgument, error_from_code
from .models import AgentCommand, AgentMessage

logger = logging.getLogger(__name__)

AGENT_MODE_ENV = "BCHELPER_MODE=agent"


@dataclass
class CommandResult:
    exit_code: int
    stdout: str
    stderr: str


def _is_windows_path(path: str) -> bool:
    return bool(re.match(r"^[A-Za-z]:[\\/]", path)) or path.startswith("\\\\")


def _normalize(path: str) -> str:
    path = path.replace("\\", "/").rstrip("/")
    return path.lower() if _is_windows_path(path) else path


class ContainerClient:
    def __init__(self, container_settings: Optional[ContainerSettings] = None) -> None:
        self.settings = container_settings or ContainerSettings()

    def run(self, args: List[str], stdin: Optional[str] = None) -> CommandResult:
        command = [self.settings.docker_command, *args]
        try:
            result = subprocess.run(
                command,
                input=stdin,
                capture_output=True,
                text=True,
                timeout=self.settings.exec_timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise ExternalToolFailure(f"docker {args[0]} timed out") from exc
        except OSError as exc:
            raise ExternalToolFailure(f"docker execution failed: {exc}") from exc

        return CommandResult(result.returncode, result.stdout, result.stderr)

    def mounts(self, container_name: str) -> List[Dict[str, Any]]:
        result = self.run(["inspect", "--format", "{{json .Mounts}}", container_name])
        if result.exit_code != 0:
            raise ExternalToolFailure(
                f"Unable to inspect container {container_name}: {result.stderr.strip()}"
            )
        return json.loads(result.stdout or "[]") or []

    def container_path(self, container_name: str, host_path: str) -> str:
        """Translate a host path to the path of the same folder inside a container."""
        normalized = _normalize(host_path)
        for mount in self.mounts(container_name):
            source = mount.get("Source") or ""
            destination = mount.get("Destination") or ""
            if not source or not destination:
                continue
            prefix = _normalize(source)
            if normalized != prefix and not normalized.startswith(prefix + "/"):
                continue

            remainder = host_path.replace("\\", "/").rstrip("/")[len(prefix):].strip("/")
            separator = "\\" if _is_windows_path(destination) else "/"
            translated = destination.rstrip("\\/")
            if remainder:
                translated += separator + remainder.replace("/", separator)
            return translated

        raise InvalidArgument(
            f"The folder {host_path} is not shared with container {container_name}"
        )

    def invoke_agent(
        self,
        container_name: str,
        command: AgentCommand,
        progress_callback: Optional[Callable[[str, str, Dict[str, Any]], None]] = None,
    ) -> Dict[str, Any]:
        """
        Send a command to the agent inside a container and wait for its answer.

        Args:
            container_name: Name of the running container
            command: Command with its request payload
            progress_callback: Receives the agent's progress messages

        Returns:
            Dict[str, Any]: Data of the agent's result message

        Raises:
            BcHelperError: The error kind reported by the agent, or
                ExternalToolFailure when the agent produced no answer
        """
        args = ["exec", "-i", "-e", AGENT_MODE_ENV, container_name, *self.settings.agent_command]
        logger.info(f"Invoking {command.command} in container {container_name}")
        result = self.run(args, stdin=command.model_dump_json())

        final: Optional[AgentMessage] = None
        for line in result.stdout.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                message = AgentMessage.model_validate_json(line)
            except ValidationError:
                logger.debug(f"Ignoring non protocol output: {line}")
                continue

            if message.type == "progress":
                logger.info(f"[{container_name}] {message.message}")
                if progress_callback:
                    progress_callback(message.status, message.message, message.data)
            else:
                final = message

        if final is None:
            raise ExternalToolFailure(
                f"No answer from agent in container {container_name} "
                f"(exit code {result.exit_code}): {result.stderr.strip()}"
            )
        if final.type == "error":
            raise error_from_code(final.data.get("code", ""), final.message)
        return final.data
