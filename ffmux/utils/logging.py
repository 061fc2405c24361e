"""Logging setup with rich console output and persistent file logging."""

from __future__ import annotations

import logging
import os
import uuid
from contextvars import ContextVar
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.theme import Theme

custom_theme = Theme(
    {
        "info": "cyan",
        "warning": "yellow bold",
        "error": "red bold",
        "success": "green bold",
        "dim": "dim white",
    }
)

console = Console(theme=custom_theme)
err_console = Console(stderr=True, theme=custom_theme)

# ── Correlation IDs ──────────────────────────────────────────────────────────

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_job_id_var: ContextVar[str] = ContextVar("job_id", default="")


def set_request_id(rid: str = "") -> str:
    """Set the current request correlation ID. Returns the ID (generates one if empty)."""
    rid = rid or uuid.uuid4().hex[:12]
    _request_id_var.set(rid)
    return rid


def set_job_id(jid: str) -> None:
    """Set the current render job ID for log correlation (per thread/context)."""
    _job_id_var.set(jid)


def _ctx_prefix() -> str:
    parts = []
    rid = _request_id_var.get()
    jid = _job_id_var.get()
    if rid:
        parts.append(f"req={rid}")
    if jid:
        parts.append(f"job={jid}")
    return f"[{' '.join(parts)}] " if parts else ""


# ── File logging ─────────────────────────────────────────────────────────────

LOG_DIR = Path(os.environ.get("FFMUX_LOG_DIR", "data/logs"))
_file_logger: logging.Logger | None = None
_render_logger: logging.Logger | None = None


class _ContextFormatter(logging.Formatter):
    """Formatter that prepends request_id/job_id to every message."""

    def format(self, record: logging.LogRecord) -> str:
        record.msg = f"{_ctx_prefix()}{record.msg}"
        return super().format(record)


def _setup_file_handler(
    logger: logging.Logger,
    filepath: Path,
    max_bytes: int = 20 * 1024 * 1024,
    backup_count: int = 5,
) -> None:
    filepath.parent.mkdir(parents=True, exist_ok=True)
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    handler = RotatingFileHandler(
        filepath, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(
        _ContextFormatter("%(asctime)s %(levelname)-8s %(name)-14s %(message)s", datefmt="%Y-%m-%d %H:%M:%S")
    )
    logger.addHandler(handler)


class Verbosity(str, Enum):
    SILENT = "silent"
    NORMAL = "normal"
    VERBOSE = "verbose"


_current_verbosity = Verbosity.NORMAL


def setup_logging(verbosity: Verbosity = Verbosity.NORMAL, log_dir: Path | None = None) -> None:
    global _current_verbosity, _file_logger, _render_logger
    _current_verbosity = verbosity

    env_level = os.environ.get("LOG_LEVEL", "").upper()
    level_map = {"DEBUG": logging.DEBUG, "INFO": logging.INFO, "WARNING": logging.WARNING,
                 "ERROR": logging.ERROR, "CRITICAL": logging.CRITICAL}
    if env_level in level_map:
        level = level_map[env_level]
    else:
        level = {
            Verbosity.SILENT: logging.ERROR,
            Verbosity.NORMAL: logging.INFO,
            Verbosity.VERBOSE: logging.DEBUG,
        }[verbosity]

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False, markup=True)],
        force=True,
    )

    target = log_dir or LOG_DIR

    _file_logger = logging.getLogger("ffmux.app")
    _file_logger.setLevel(logging.DEBUG)
    _file_logger.propagate = False
    _setup_file_handler(_file_logger, target / "app.log")

    # ffmpeg command lines, filter graphs and stderr tails
    _render_logger = logging.getLogger("ffmux.render")
    _render_logger.setLevel(logging.DEBUG)
    _render_logger.propagate = False
    _setup_file_handler(_render_logger, target / "render.log")


def get_render_logger() -> logging.Logger:
    return _render_logger or logging.getLogger("ffmux.render")


def info(msg: str, **kwargs: Any) -> None:
    if _current_verbosity != Verbosity.SILENT:
        console.print(f"[info]ℹ {msg}[/info]", **kwargs)
    if _file_logger:
        _file_logger.info(msg)


def success(msg: str, **kwargs: Any) -> None:
    if _current_verbosity != Verbosity.SILENT:
        console.print(f"[success]✓ {msg}[/success]", **kwargs)
    if _file_logger:
        _file_logger.info(msg)


def warn(msg: str, **kwargs: Any) -> None:
    if _current_verbosity != Verbosity.SILENT:
        console.print(f"[warning]⚠ {msg}[/warning]", **kwargs)
    if _file_logger:
        _file_logger.warning(msg)


def error(msg: str, **kwargs: Any) -> None:
    err_console.print(f"[error]✗ {msg}[/error]", **kwargs)
    if _file_logger:
        _file_logger.error(msg)


def debug(msg: str, **kwargs: Any) -> None:
    if _current_verbosity == Verbosity.VERBOSE:
        console.print(f"[dim]  {msg}[/dim]", **kwargs)
    if _file_logger:
        _file_logger.debug(msg)


def render_log(msg: str, level: str = "info") -> None:
    """Write to the render log file (always, regardless of verbosity)."""
    rl = get_render_logger()
    getattr(rl, level, rl.info)(msg)


def make_progress(**kwargs: Any) -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
        **kwargs,
    )
