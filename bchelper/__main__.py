"""
Main entry point for the container helper when run as a module.
"""

import logging.config
import os
import sys

from .config import settings


def setup_logging(log_name: str) -> None:
    """Create the log directory and configure logging."""
    os.makedirs(settings.logging.directory, exist_ok=True)
    logging.config.dictConfig(settings.get_logging_config(log_name))


def main():
    """
    Main entry point for the package when run as a module.
    This function is called when running `python -m bchelper`.

    By default, it runs the host command line protocol. Inside a container
    the restore agent is started with BCHELPER_MODE=agent.
    """
    mode = os.environ.get("BCHELPER_MODE", "cli").lower()

    if mode == "agent":
        from .restore_agent import main as agent_main

        setup_logging("agent")
        return agent_main()
    else:
        from .cli import main as cli_main

        setup_logging("bchelper")
        return cli_main()


if __name__ == "__main__":
    sys.exit(main())
