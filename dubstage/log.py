"""
Logging setup: stdlib loggers rendered through rich.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(config: dict, console: "Console | None" = None) -> None:
    level = config.get("logging", {}).get("level", "INFO")
    handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)

    root = logging.getLogger("dubstage")
    root.handlers = [handler]
    root.setLevel(level)
    root.propagate = False
