import sys
from pathlib import Path
from typing import Any, TextIO

from rich.console import Console
from rich.markup import escape

from hotdog.utils.config_dir import get_config_dir

# Define log file path in user config directory
CONFIG_DIR = get_config_dir()
LOG_FILE = CONFIG_DIR / "hotdog_session.log"

# Prefix used for messages that originate on the page side
PAGE_PREFIX = "[HotDog]"

# Open the log file, overwriting if it exists
try:
    log_file_handle = open(LOG_FILE, "w", encoding="utf-8")
except Exception as e:
    # Fallback to stderr if file cannot be opened
    print(f"Error opening log file {LOG_FILE}: {e}", file=sys.stderr)
    log_file_handle = None


class Logger:
    def __init__(self, enabled: bool = True, file: TextIO | None = log_file_handle):
        self.enabled = enabled
        self._console = Console(file=file)
        self._shutting_down = False  # Flag to suppress output during shutdown

    def mark_shutting_down(self):
        """Mark logger as shutting down to suppress further output"""
        self._shutting_down = True

    @property
    def active(self) -> bool:
        return self.enabled and not self._shutting_down

    def _emit(self, message: Any, style: str | None, *args, exc_info: bool = False, **kwargs):
        if not self.active:
            return
        if style:
            message = f"[{style}]{message}[/{style}]"
        self._console.print(message, *args, **kwargs)
        if exc_info:
            self._console.print_exception()

    def debug(self, message: Any, *args, **kwargs):
        """Print debug-level messages."""
        self._emit(message, "dim", *args, **kwargs)

    def info(self, message: Any, *args, **kwargs):
        """Print info-level messages."""
        self._emit(message, None, *args, **kwargs)

    def warning(self, message: Any, *args, **kwargs):
        """Print warning-level messages."""
        self._emit(message, "yellow", *args, **kwargs)

    def error(self, message: Any, *args, **kwargs):
        """Print error-level messages."""
        self._emit(message, "red", *args, **kwargs)

    def success(self, message: Any, *args, **kwargs):
        """Print success messages."""
        self._emit(message, "green", *args, **kwargs)

    def get_log_file_path(self) -> Path | None:
        """Return the path to the log file, if configured."""
        if log_file_handle:
            return LOG_FILE
        return None


def page_log(message: str) -> str:
    """Tag a page-side message so it can be told apart from service output."""
    return f"{escape(PAGE_PREFIX)} {message}"


# Create a default instance
logger = Logger()

if log_file_handle:
    logger.debug(f"Logging to file: {LOG_FILE}")
else:
    logger.warning("Logging to file disabled due to error during file open.")
