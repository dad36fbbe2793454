"""
Typed messages exchanged with the restore agent running inside a container.

The host writes one AgentCommand as JSON to the agent's STDIN. The agent
answers with newline-delimited AgentMessage JSON on STDOUT: any number of
``progress`` messages followed by a single ``result`` or ``error``.
"""

import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

DEFAULT_DATABASE_FOLDER = "c:\\databases"
DEFAULT_SQL_TIMEOUT = 300
RESTORE_COMMAND = "restore-databases"


class RestoreRequest(BaseModel):
    """Parameters of a database restore inside a container."""

    bak_folder: str
    tenant: Optional[List[str]] = None
    database_folder: str = DEFAULT_DATABASE_FOLDER
    sql_timeout: int = Field(default=DEFAULT_SQL_TIMEOUT, gt=0)


class AgentCommand(BaseModel):
    command: str
    request: Dict[str, Any] = Field(default_factory=dict)


class AgentMessage(BaseModel):
    """A single line of agent output."""

    type: Literal["progress", "result", "error"]
    timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    status: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)


class RestoreResult(BaseModel):
    container_name: str
    databases: List[str]


def output_message(
    msg_type: str, status: str, message: str, data: Optional[Dict[str, Any]] = None
) -> None:
    """
    Output a structured message to STDOUT.

    Args:
        msg_type: Message type (progress, result, error)
        status: Status (processing, success, failed)
        message: Human-readable message
        data: Optional data payload
    """
    output = AgentMessage(type=msg_type, status=status, message=message, data=data or {})

    # Write to STDOUT as a single line
    sys.stdout.write(output.model_dump_json() + "\n")
    sys.stdout.flush()
