"""SRT parsing into text overlay items."""

from __future__ import annotations

import re

from ffmux.utils.logging import warn
from ffmux.video.timeline import TextOverlay

SUBTITLE_STYLE = "subtitle"
SUBTITLE_POSITION = "bottom-center"

_TIMING_RE = re.compile(
    r"^\s*(\d{2}):(\d{2}):(\d{2}),(\d{3})\s*-->\s*(\d{2}):(\d{2}):(\d{2}),(\d{3})"
)


def srt_time_to_seconds(h: str, m: str, s: str, ms: str) -> float:
    return int(h) * 3600 + int(m) * 60 + int(s) + int(ms) / 1000


def parse_srt(content: str) -> list[TextOverlay]:
    """Parse SRT text into bottom-centered subtitle overlays.

    Blocks with fewer than three lines (index, timing, text) are skipped, as
    are blocks whose second line is not a valid timing line.
    """
    # request bodies sometimes carry the two-character sequence "\n"
    normalized = content.replace("\\n", "\n").replace("\r\n", "\n").strip()
    overlays: list[TextOverlay] = []
    for block in re.split(r"\n\s*\n", normalized):
        lines = block.strip("\n").split("\n")
        if len(lines) < 3:
            continue
        m = _TIMING_RE.match(lines[1])
        if not m:
            warn(f"[subtitles] Skipping block with invalid timing line: {lines[1]!r}")
            continue
        start = srt_time_to_seconds(*m.groups()[:4])
        end = srt_time_to_seconds(*m.groups()[4:])
        if end < start:
            warn(f"[subtitles] Skipping block that ends before it starts: {lines[1]!r}")
            continue
        overlays.append(TextOverlay(
            text="\n".join(lines[2:]),
            style=SUBTITLE_STYLE,
            position=SUBTITLE_POSITION,
            start_time=start,
            duration=end - start,
        ))
    return overlays
