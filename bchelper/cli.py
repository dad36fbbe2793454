#!/usr/bin/env python3
"""
Business Central container helper - command line protocol.

Accepts one command as JSON on STDIN and produces structured JSON lines on
STDOUT, making it composable with other tools:

    {"command": "new-compiler-folder", "options": {"artifact_url": "..."}}
    {"command": "remove-compiler-folder", "options": {"compiler_folder": "..."}}
    {"command": "restore-databases", "options": {"container_name": "bcserver"}}
"""

import json
import logging
import sys
from typing import Any, Callable, Dict, Optional

from .compiler_folder import CompilerFolderBuilder
from .config import AppSettings, settings as default_settings
from .database_restorer import DatabaseRestorer
from .errors import InvalidArgument
from .models import output_message

logger = logging.getLogger(__name__)


def _progress(status: str, message: str, data: Dict[str, Any]) -> None:
    output_message("progress", status, message, data)


def new_compiler_folder(options: Dict[str, Any], app_settings: AppSettings) -> Dict[str, Any]:
    if not options.get("artifact_url"):
        raise InvalidArgument("Missing artifact_url option")

    builder = CompilerFolderBuilder(app_settings, progress_callback=_progress)
    compiler_folder = builder.build(
        options["artifact_url"],
        container_name=options.get("container_name", ""),
        cache_folder=options.get("cache_folder"),
        packages_folder=options.get("packages_folder"),
        vsix_file=options.get("vsix_file"),
        include_al=bool(options.get("include_al", False)),
    )
    return {"compiler_folder": compiler_folder}


def remove_compiler_folder(options: Dict[str, Any], app_settings: AppSettings) -> Dict[str, Any]:
    if not options.get("compiler_folder"):
        raise InvalidArgument("Missing compiler_folder option")

    CompilerFolderBuilder(app_settings).remove(options["compiler_folder"])
    return {"compiler_folder": options["compiler_folder"]}


def restore_databases(options: Dict[str, Any], app_settings: AppSettings) -> Dict[str, Any]:
    restorer = DatabaseRestorer(app_settings, progress_callback=_progress)
    kwargs = {
        key: options[key]
        for key in ("bak_folder", "tenant", "database_folder", "sql_timeout")
        if options.get(key) is not None
    }
    result = restorer.restore(options.get("container_name", ""), **kwargs)
    return result.model_dump()


COMMANDS: Dict[str, Callable[[Dict[str, Any], AppSettings], Dict[str, Any]]] = {
    "new-compiler-folder": new_compiler_folder,
    "remove-compiler-folder": remove_compiler_folder,
    "restore-databases": restore_databases,
}

COMMAND_OPTIONS: Dict[str, frozenset] = {
    "new-compiler-folder": frozenset(
        {"artifact_url", "container_name", "cache_folder", "packages_folder", "vsix_file", "include_al"}
    ),
    "remove-compiler-folder": frozenset({"compiler_folder"}),
    "restore-databases": frozenset(
        {"container_name", "bak_folder", "tenant", "database_folder", "sql_timeout"}
    ),
}


def validate_options(command_type: str, options: Any) -> Dict[str, Any]:
    """Reject options that are not an object or that the command does not accept."""
    if options is None:
        return {}
    if not isinstance(options, dict):
        raise InvalidArgument(f"Options of {command_type} must be an object")
    unknown = sorted(set(options) - COMMAND_OPTIONS[command_type])
    if unknown:
        raise InvalidArgument(f"Unknown option(s) for {command_type}: {', '.join(unknown)}")
    return options


def process_command(command: Dict[str, Any], app_settings: Optional[AppSettings] = None) -> int:
    """
    Process a command.

    Args:
        command: Command dictionary from STDIN
        app_settings: Settings handed to the operations

    Returns:
        int: Exit code (0 for success, non-zero for error)
    """
    command_type = str(command.get("command", "")).lower()
    handler = COMMANDS.get(command_type)
    if handler is None:
        output_message(
            "error",
            "failed",
            f"Unknown command: {command_type}",
            {"code": "UNKNOWN_COMMAND"},
        )
        return 1

    try:
        options = validate_options(command_type, command.get("options"))
        result = handler(options, app_settings or default_settings)
        output_message("result", "success", f"{command_type} completed", result)
        return 0

    except Exception as e:
        logger.exception(f"Error processing {command_type} command")
        output_message(
            "error",
            "failed",
            str(e),
            {"code": type(e).__name__, "details": {"command": command_type}},
        )
        return 1


def main() -> int:
    """
    Main entry point for the command line protocol.

    Reads a command from STDIN, processes it, and outputs result to STDOUT.

    Returns:
        int: Exit code
    """
    try:
        if sys.stdin.isatty():
            output_message(
                "error",
                "failed",
                "No input on STDIN. Use pipe to send commands.",
                {"code": "NO_INPUT"},
            )
            return 1

        command_str = sys.stdin.read().strip()
        if not command_str:
            output_message(
                "error",
                "failed",
                "Empty command received on STDIN",
                {"code": "EMPTY_COMMAND"},
            )
            return 1

        try:
            command = json.loads(command_str)
        except json.JSONDecodeError:
            output_message(
                "error", "failed", "Invalid JSON command", {"code": "INVALID_JSON"}
            )
            return 1
        if not isinstance(command, dict):
            output_message(
                "error", "failed", "Invalid JSON command", {"code": "INVALID_JSON"}
            )
            return 1

        return process_command(command)

    except KeyboardInterrupt:
        output_message(
            "error", "failed", "Operation interrupted", {"code": "INTERRUPTED"}
        )
        return 130


if __name__ == "__main__":
    sys.exit(main())
