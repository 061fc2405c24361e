"""Central runner for ffmpeg/ffprobe subprocesses with priority and thread control.

Every ffmpeg and ffprobe invocation goes through this module so that thread
limits and nice/ionice priorities are applied consistently and running
processes show up in the media queue status.

ENV configuration:
    FFMPEG_THREADS        : -threads flag for ffmpeg (default 0 = ffmpeg decides)
    MEDIA_NICE            : nice value for render processes (default 10, Linux only)
    MEDIA_IONICE_CLASS    : ionice class (default 2 = best-effort, Linux only)
    MEDIA_IONICE_LEVEL    : ionice level (default 7, Linux only)
"""

from __future__ import annotations

import os
import platform
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any

from ffmux.utils.logging import debug, render_log

FFMPEG_THREADS: int = int(os.environ.get("FFMPEG_THREADS", "0"))
MEDIA_NICE: int = int(os.environ.get("MEDIA_NICE", "10"))
MEDIA_IONICE_CLASS: int = int(os.environ.get("MEDIA_IONICE_CLASS", "2"))
MEDIA_IONICE_LEVEL: int = int(os.environ.get("MEDIA_IONICE_LEVEL", "7"))

IS_LINUX: bool = platform.system() == "Linux"

_stats_lock = threading.Lock()


def configure_media_executor(ffmpeg_threads: int | None = None, nice: int | None = None) -> None:
    """Apply values from config.yaml (env vars set at import time still win when present)."""
    global FFMPEG_THREADS, MEDIA_NICE
    if ffmpeg_threads is not None and "FFMPEG_THREADS" not in os.environ:
        FFMPEG_THREADS = ffmpeg_threads
    if nice is not None and "MEDIA_NICE" not in os.environ:
        MEDIA_NICE = nice


# ── Process tracking ──────────────────────────────────────────────────────────

class MediaProcessStatus(str, Enum):
    running = "running"
    done = "done"
    failed = "failed"


@dataclass
class MediaProcessInfo:
    id: str
    tool: str  # "ffmpeg" | "ffprobe"
    description: str
    status: MediaProcessStatus = MediaProcessStatus.running
    started_at: float = 0.0
    finished_at: float = 0.0
    pid: int = 0
    error: str = ""


_active: dict[str, MediaProcessInfo] = {}
_counter: int = 0


def _next_id(tool: str) -> str:
    global _counter
    with _stats_lock:
        _counter += 1
        return f"media-{tool}-{_counter}"


def _track(tool: str, description: str) -> MediaProcessInfo:
    proc_info = MediaProcessInfo(
        id=_next_id(tool), tool=tool, description=description, started_at=time.monotonic(),
    )
    with _stats_lock:
        _active[proc_info.id] = proc_info
    return proc_info


def get_media_queue_status() -> dict[str, Any]:
    """Return running media processes for the health endpoint."""
    with _stats_lock:
        procs = list(_active.values())
    running = [p for p in procs if p.status == MediaProcessStatus.running]
    return {
        "ffmpeg_threads": FFMPEG_THREADS,
        "nice": MEDIA_NICE,
        "running": len(running),
        "processes": [
            {"id": p.id, "tool": p.tool, "description": p.description, "pid": p.pid}
            for p in running
        ],
    }


# ── Command decoration ───────────────────────────────────────────────────────

def _build_nice_prefix() -> list[str]:
    """Build nice + ionice command prefix for Linux, empty list otherwise."""
    if not IS_LINUX:
        return []
    prefix: list[str] = []
    if MEDIA_NICE > 0 and shutil.which("nice"):
        prefix.extend(["nice", "-n", str(MEDIA_NICE)])
    if shutil.which("ionice"):
        prefix.extend(["ionice", "-c", str(MEDIA_IONICE_CLASS), "-n", str(MEDIA_IONICE_LEVEL)])
    return prefix


def inject_ffmpeg_thread_flags(cmd: list[str]) -> list[str]:
    """Insert -threads (and -filter_complex_threads) right after 'ffmpeg'.

    Commands that already carry -threads, ffprobe commands and anything that
    is not ffmpeg pass through unchanged.
    """
    if not cmd or cmd[0] != "ffmpeg" or FFMPEG_THREADS <= 0:
        return list(cmd)
    cmd = list(cmd)
    if "-threads" in cmd:
        return cmd

    t = str(FFMPEG_THREADS)
    if "-filter_complex" in cmd:
        cmd[1:1] = ["-filter_complex_threads", t]
    cmd[1:1] = ["-threads", t]
    return cmd


# ── Runners ──────────────────────────────────────────────────────────────────

def run_media_subprocess(
    cmd: list[str],
    *,
    description: str = "",
    tool: str = "ffprobe",
    timeout: int | None = None,
) -> subprocess.CompletedProcess:
    """Run a short media command (probes) to completion and capture its output.

    Raises:
        subprocess.TimeoutExpired, FileNotFoundError
    """
    proc_info = _track(tool, description or " ".join(cmd[:4]))
    try:
        result = subprocess.run(
            inject_ffmpeg_thread_flags(cmd), capture_output=True, text=True, timeout=timeout,
        )
    except Exception as e:
        _finish(proc_info, -1, str(e))
        raise
    _finish(proc_info, result.returncode, result.stderr or "")
    return result


def start_media_process(
    cmd: list[str],
    *,
    description: str = "",
    tool: str = "ffmpeg",
    **popen_kwargs: Any,
) -> tuple[subprocess.Popen, str]:
    """Start a long-running media process with nice/ionice applied.

    The caller reads the pipes and calls finish_media_process(proc_id, ...)
    once the process has exited.
    """
    full_cmd = _build_nice_prefix() + inject_ffmpeg_thread_flags(cmd)
    proc_info = _track(tool, description or " ".join(cmd[:4]))
    try:
        proc = subprocess.Popen(full_cmd, **popen_kwargs)
    except Exception as e:
        _finish(proc_info, -1, str(e))
        raise
    proc_info.pid = proc.pid
    debug(f"[media-exec] {proc_info.description} started (pid={proc.pid})")
    render_log(f"Running: {proc_info.description} (pid={proc.pid})")
    return proc, proc_info.id


def finish_media_process(proc_id: str, returncode: int, error_msg: str = "") -> None:
    with _stats_lock:
        proc_info = _active.get(proc_id)
    if proc_info:
        _finish(proc_info, returncode, error_msg)


def _finish(proc_info: MediaProcessInfo, returncode: int, error_msg: str) -> None:
    proc_info.finished_at = time.monotonic()
    elapsed = proc_info.finished_at - proc_info.started_at
    if returncode == 0:
        proc_info.status = MediaProcessStatus.done
        debug(f"[media-exec] {proc_info.description}: done ({elapsed:.1f}s)")
    else:
        proc_info.status = MediaProcessStatus.failed
        proc_info.error = error_msg[-500:]
        render_log(f"Failed: {proc_info.description} (exit={returncode}, {elapsed:.1f}s)", level="warning")
    _cleanup_finished()


def _cleanup_finished(max_keep: int = 50) -> None:
    with _stats_lock:
        finished = [
            (pid, p) for pid, p in _active.items()
            if p.status != MediaProcessStatus.running
        ]
        if len(finished) > max_keep:
            finished.sort(key=lambda x: x[1].finished_at)
            for pid, _ in finished[:-max_keep]:
                del _active[pid]
