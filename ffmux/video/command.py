"""ffmpeg command assembly and supervised execution.

``build_ffmpeg_command`` turns a compiled graph into an argv.
``RenderInvocation`` runs that argv and exposes the run as an event stream:
one ``started``, any number of ``progress`` events carrying elapsed output
seconds, then exactly one ``finished`` or ``failed``.
"""

from __future__ import annotations

import collections
import re
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from ffmux.utils.config import EncodingConfig
from ffmux.utils.logging import debug, error, info, render_log
from ffmux.utils.media_executor import finish_media_process, start_media_process
from ffmux.video.filter_graph import GraphBuild

FASTSTART_CONTAINERS = {"mp4", "mov", "m4v"}
STDERR_TAIL_LINES = 200


def build_ffmpeg_command(
    build: GraphBuild,
    output_path: Path,
    quality: str = "23",
    extension: str = "mp4",
    encoding: EncodingConfig | None = None,
) -> list[str]:
    enc = encoding or EncodingConfig()
    cmd = ["ffmpeg", "-y", "-hide_banner"]
    for media in build.inputs:
        cmd += media.args()
    cmd += ["-filter_complex", build.program.render()]

    cmd += ["-map", f"[{build.video_label}]"]
    if build.audio_label:
        cmd += ["-map", f"[{build.audio_label}]"]

    cmd += [
        "-c:v", enc.video_codec,
        "-crf", str(quality),
        "-preset", enc.preset,
        "-r", str(enc.frame_rate),
        "-pix_fmt", enc.pix_fmt,
        "-profile:v", enc.profile,
        "-level", enc.level,
        "-maxrate", enc.maxrate,
        "-bufsize", enc.bufsize,
        "-fps_mode", "cfr",
    ]
    if extension.lower() in FASTSTART_CONTAINERS:
        cmd += ["-movflags", "+faststart"]

    if build.audio_label:
        cmd += ["-c:a", enc.audio_codec, "-b:a", enc.audio_bitrate]
    else:
        cmd += ["-an"]

    cmd += ["-progress", "pipe:1", "-nostats", str(output_path)]
    return cmd


# ── Output parsing ───────────────────────────────────────────────────────────

_TIME_RE = re.compile(r"(?:^|\s)(?:out_)?time=\s*(-?)(\d+):(\d+):(\d+(?:\.\d+)?)")


def parse_ffmpeg_time(line: str) -> float | None:
    """Extract elapsed seconds from a progress line (out_time=HH:MM:SS.us)
    or an ffmpeg stderr status line (time=HH:MM:SS.cs)."""
    m = _TIME_RE.search(line)
    if not m:
        return None
    sign, h, mi, s = m.group(1), int(m.group(2)), int(m.group(3)), float(m.group(4))
    t = h * 3600 + mi * 60 + s
    return -t if sign == "-" else t


def extract_ffmpeg_error(stderr_text: str) -> str:
    """Extract meaningful error from ffmpeg stderr (strip banner/config)."""
    useful = []
    skip_banner = True
    for line in stderr_text.strip().split("\n"):
        if skip_banner:
            if any(x in line for x in (
                "--enable-", "--disable-", "configuration:", "built with",
                "ffmpeg version", "Copyright",
            )):
                continue
            if line.strip().startswith("lib") and "/" in line:
                continue
            skip_banner = False
        useful.append(line)
    return "\n".join(useful[-15:]) if useful else stderr_text[-500:]


# ── Execution ────────────────────────────────────────────────────────────────

@dataclass
class RenderEvent:
    kind: str  # started | progress | finished | failed
    elapsed: float = 0.0
    output: Path | None = None
    message: str = ""
    error_kind: str | None = None  # encode | cancelled | timeout

    @property
    def terminal(self) -> bool:
        return self.kind in ("finished", "failed")


class RenderInvocation:
    """One supervised ffmpeg run.

    Iterate ``events()`` from the worker thread; call ``cancel()`` from any
    thread.  A cancel_event passed in is honoured the same way, and a
    positive timeout stops the process with error kind "timeout".
    """

    POLL_INTERVAL = 0.25
    TERMINATE_GRACE = 5

    def __init__(
        self,
        cmd: list[str],
        output_path: Path,
        *,
        description: str = "render",
        cancel_event: threading.Event | None = None,
        timeout: float | None = None,
    ):
        self.cmd = cmd
        self.output_path = Path(output_path)
        self.description = description
        self.cancel_event = cancel_event or threading.Event()
        self.timeout = timeout if timeout and timeout > 0 else None
        self._stop_reason: str | None = None
        self._done = threading.Event()
        self._stderr: collections.deque[str] = collections.deque(maxlen=STDERR_TAIL_LINES)

    def cancel(self) -> None:
        self.cancel_event.set()

    def events(self) -> Iterator[RenderEvent]:
        t0 = time.monotonic()
        info(f"[render] {self.description} → {self.output_path.name}")
        debug(f"[render] Full CMD:\n{' '.join(self.cmd)}")
        try:
            proc, proc_id = start_media_process(
                self.cmd, tool="ffmpeg", description=self.description,
                stdin=subprocess.DEVNULL, stdout=subprocess.PIPE, stderr=subprocess.PIPE,
                text=True, bufsize=1,
            )
        except OSError as e:
            error(f"[render] Could not start ffmpeg: {e}")
            yield RenderEvent("failed", message=f"ffmpeg could not be started: {e}",
                              error_kind="encode")
            return

        yield RenderEvent("started")

        drain = threading.Thread(target=self._drain_stderr, args=(proc,),
                                 name="ffmpeg-stderr", daemon=True)
        watch = threading.Thread(target=self._watch, args=(proc, t0),
                                 name="ffmpeg-watch", daemon=True)
        drain.start()
        watch.start()

        try:
            for line in proc.stdout:
                elapsed = parse_ffmpeg_time(line)
                if elapsed is not None and elapsed >= 0:
                    yield RenderEvent("progress", elapsed=elapsed)
            proc.wait()
        finally:
            self._done.set()
            if proc.poll() is None:
                proc.kill()
                proc.wait()
            drain.join(timeout=self.TERMINATE_GRACE)
            watch.join(timeout=self.TERMINATE_GRACE)

        stderr_text = "".join(self._stderr)
        finish_media_process(proc_id, proc.returncode,
                             stderr_text[-500:] if proc.returncode != 0 else "")
        elapsed = time.monotonic() - t0

        if self._stop_reason is not None:
            msg = ("Render timed out" if self._stop_reason == "timeout"
                   else "Render cancelled")
            render_log(f"Render STOPPED ({self._stop_reason}) after {elapsed:.1f}s", level="warning")
            self._discard_output()
            yield RenderEvent("failed", message=msg, error_kind=self._stop_reason)
            return

        if proc.returncode != 0:
            err_msg = extract_ffmpeg_error(stderr_text)
            error(f"[render] Render failed:\n{err_msg}")
            render_log(f"Render FAILED (exit={proc.returncode}): {err_msg}", level="error")
            self._discard_output()
            yield RenderEvent("failed", message=err_msg, error_kind="encode")
            return

        if not self.output_path.exists():
            render_log("Output file not created", level="error")
            yield RenderEvent("failed", message="Output file not created", error_kind="encode")
            return

        mb = self.output_path.stat().st_size / (1024 * 1024)
        info(f"[render] Rendered: {self.output_path.name} ({mb:.1f} MB)")
        render_log(f"Render OK: {self.output_path.name} ({mb:.1f} MB, {elapsed:.1f}s)")
        yield RenderEvent("finished", elapsed=elapsed, output=self.output_path)

    def _drain_stderr(self, proc: subprocess.Popen) -> None:
        for line in proc.stderr:
            self._stderr.append(line)

    def _watch(self, proc: subprocess.Popen, t0: float) -> None:
        while not self._done.is_set():
            if self.cancel_event.wait(self.POLL_INTERVAL):
                self._stop(proc, "cancelled")
                return
            if self.timeout is not None and time.monotonic() - t0 > self.timeout:
                self._stop(proc, "timeout")
                return

    def _stop(self, proc: subprocess.Popen, reason: str) -> None:
        if proc.poll() is not None:
            return
        self._stop_reason = reason
        render_log(f"Stopping ffmpeg (pid={proc.pid}): {reason}", level="warning")
        proc.terminate()
        try:
            proc.wait(timeout=self.TERMINATE_GRACE)
        except subprocess.TimeoutExpired:
            proc.kill()

    def _discard_output(self) -> None:
        self.output_path.unlink(missing_ok=True)
