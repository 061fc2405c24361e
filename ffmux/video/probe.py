"""ffprobe wrapper: duration and stream presence for timeline assets."""

from __future__ import annotations

import json
import subprocess
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Protocol

from ffmux.exceptions import ProbeDegraded
from ffmux.utils.logging import debug, render_log, warn
from ffmux.utils.media_executor import run_media_subprocess


@dataclass
class ProbeResult:
    duration: float = 0
    has_audio: bool = False
    has_video: bool = False
    width: int = 0
    height: int = 0


class MediaProber(Protocol):
    def probe(self, path: Path) -> ProbeResult:
        """Raise ProbeDegraded when the asset cannot be inspected."""
        ...


def parse_probe_output(raw: str) -> ProbeResult:
    data = json.loads(raw)
    result = ProbeResult()
    fmt = data.get("format", {})
    for s in data.get("streams", []):
        if s.get("codec_type") == "video":
            result.has_video = True
            result.width = int(s.get("width", 0))
            result.height = int(s.get("height", 0))
        elif s.get("codec_type") == "audio":
            result.has_audio = True
    try:
        result.duration = float(fmt.get("duration") or 0)
    except ValueError:
        result.duration = 0
    return result


class FFprobeProber:
    """Probe assets with the ffprobe binary."""

    def __init__(self, timeout: int = 30):
        self.timeout = timeout

    def probe(self, path: Path) -> ProbeResult:
        cmd = [
            "ffprobe", "-v", "quiet", "-print_format", "json",
            "-show_format", "-show_streams", str(path),
        ]
        try:
            r = run_media_subprocess(
                cmd, tool="ffprobe", description=f"probe {path.name}", timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise ProbeDegraded(f"ffprobe failed for {path.name}: {e}") from e
        if r.returncode != 0:
            raise ProbeDegraded(f"ffprobe exited with {r.returncode} for {path.name}")
        try:
            return parse_probe_output(r.stdout)
        except (ValueError, TypeError) as e:
            raise ProbeDegraded(f"unreadable ffprobe output for {path.name}: {e}") from e


class CachingProber:
    """Per-compilation probe cache.

    Each distinct path is probed at most once; ``probe_many`` fans distinct
    paths out over a small thread pool.  A failed probe is cached as None and
    reported once as a warning.
    """

    def __init__(self, prober: MediaProber, parallelism: int = 4):
        self._prober = prober
        self._parallelism = max(1, parallelism)
        self._cache: dict[Path, ProbeResult | None] = {}
        self._lock = threading.Lock()

    def probe(self, path: Path) -> ProbeResult | None:
        with self._lock:
            if path in self._cache:
                return self._cache[path]
        try:
            result: ProbeResult | None = self._prober.probe(path)
            debug(f"[probe] {path.name}: duration={result.duration:.2f}s audio={result.has_audio}")
        except ProbeDegraded as e:
            warn(f"[probe] {e}, using fallback values")
            render_log(f"Probe degraded: {e}", level="warning")
            result = None
        with self._lock:
            self._cache.setdefault(path, result)
            return self._cache[path]

    def probe_many(self, paths: Iterable[Path]) -> dict[Path, ProbeResult | None]:
        unique = list(dict.fromkeys(paths))
        if len(unique) > 1 and self._parallelism > 1:
            with ThreadPoolExecutor(max_workers=min(self._parallelism, len(unique)),
                                    thread_name_prefix="probe") as pool:
                results = list(pool.map(self.probe, unique))
        else:
            results = [self.probe(p) for p in unique]
        return dict(zip(unique, results))
