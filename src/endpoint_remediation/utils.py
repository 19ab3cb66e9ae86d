"""
Utility functions for endpoint remediation.

Includes:
- Process execution helpers
- Byte formatting
- Console logging setup with severity colors
"""

import asyncio
import logging
import subprocess
import sys
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)


# ANSI color codes
COLORS = {
    "reset": "\033[0m",
    "dim": "\033[2m",
    "bright_black": "\033[90m",
    "bright_red": "\033[91m",
    "bright_green": "\033[92m",
    "bright_yellow": "\033[93m",
    "bright_cyan": "\033[96m",
    "bg_red": "\033[41m",
    "white": "\033[37m",
}

LEVEL_COLORS = {
    "DEBUG": COLORS["bright_black"],
    "INFO": COLORS["bright_green"],
    "WARNING": COLORS["bright_yellow"],
    "ERROR": COLORS["bright_red"],
    "CRITICAL": COLORS["bg_red"] + COLORS["white"],
}


class ColorfulFormatter(logging.Formatter):
    """Console formatter that colors the level and message by severity."""

    def __init__(self, use_colors: bool = True):
        super().__init__(datefmt='%Y-%m-%d %H:%M:%S')
        self.use_colors = use_colors

    def _colorize(self, text: str, color: str) -> str:
        if not self.use_colors:
            return text
        return f"{color}{text}{COLORS['reset']}"

    def format(self, record: logging.LogRecord) -> str:
        color = LEVEL_COLORS.get(record.levelname, COLORS["white"])
        timestamp = self._colorize(self.formatTime(record, self.datefmt), COLORS["dim"])
        level = self._colorize(f"{record.levelname:<8}", color)
        name = record.name
        if name.startswith("endpoint_remediation."):
            name = name[len("endpoint_remediation."):]
        component = self._colorize(f"{name:<12}", COLORS["bright_cyan"])

        message = record.getMessage()
        if record.levelno >= logging.WARNING:
            message = self._colorize(message, color)

        line = f"{timestamp} {level} {component} {message}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(log_level: str = 'INFO', use_colors: bool = True) -> None:
    """
    Configure console logging.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        use_colors: Color output by severity (ignored when stderr is not a TTY)
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ColorfulFormatter(use_colors=use_colors and sys.stderr.isatty()))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, log_level.upper()))


def format_bytes(size: float) -> str:
    """Render a byte count with a binary unit, e.g. 1536 -> '1.5 KB'."""
    for unit in ("B", "KB", "MB", "GB"):
        if abs(size) < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


class CommandResult:
    """Result of a command execution."""

    def __init__(
        self,
        exit_code: int,
        stdout: str,
        stderr: str,
        duration_sec: float
    ):
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        self.duration_sec = duration_sec
        self.success = exit_code == 0

    def __repr__(self):
        return f"CommandResult(exit_code={self.exit_code}, success={self.success})"


async def run_command(
    cmd: list[str],
    timeout: Optional[float] = None,
    check: bool = True
) -> CommandResult:
    """
    Run a command asynchronously.

    Args:
        cmd: Command and arguments as list
        timeout: Timeout in seconds (None = no timeout)
        check: Raise exception if exit code != 0

    Returns:
        CommandResult with exit code, stdout, stderr, duration

    Raises:
        subprocess.CalledProcessError: If check=True and command fails
        asyncio.TimeoutError: If timeout exceeded
        FileNotFoundError: If the executable does not exist
    """
    start_time = datetime.now(timezone.utc)

    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE
    )

    try:
        if timeout:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=timeout
            )
        else:
            stdout, stderr = await process.communicate()
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()

    result = CommandResult(
        exit_code=process.returncode,
        stdout=stdout.decode('utf-8', errors='replace') if stdout else '',
        stderr=stderr.decode('utf-8', errors='replace') if stderr else '',
        duration_sec=duration
    )

    if check and result.exit_code != 0:
        raise subprocess.CalledProcessError(
            result.exit_code,
            cmd,
            output=result.stdout,
            stderr=result.stderr
        )

    return result


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
