"""Timeline model and resolution.

Video and image clips form the backbone: they play back to back and advance
the cursor.  Audio clips and text overlays are positioned on top of that
backbone at absolute times.  Audio overlays may extend the total duration,
text overlays never do.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Union

from ffmux.exceptions import ValidationError
from ffmux.utils.logging import debug, render_log
from ffmux.video.probe import CachingProber, ProbeResult
from ffmux.video.scaling import ScalingMode

DEFAULT_IMAGE_DURATION = 5.0
DEFAULT_TEXT_DURATION = 5.0
FALLBACK_DURATION = 5.0


# ── Timeline items ────────────────────────────────────────────────────────────

@dataclass
class VideoClip:
    filename: str
    cut: tuple[float, float] | None = None
    volume: float = 100
    scaling: ScalingMode | None = None


@dataclass
class ImageClip:
    filename: str
    duration: float = DEFAULT_IMAGE_DURATION
    scaling: ScalingMode | None = None


@dataclass
class AudioClip:
    filename: str
    start_time: float | None = None
    cut: tuple[float, float] | None = None
    duration: float | None = None
    volume: float = 100


@dataclass
class TextOverlay:
    text: str
    style: str = "basic"
    font_size: int | None = None
    position: str | dict[str, str] = "middle-center"
    start_time: float = 0
    duration: float = DEFAULT_TEXT_DURATION


TimelineItem = Union[VideoClip, ImageClip, AudioClip, TextOverlay]
MediaItem = Union[VideoClip, ImageClip, AudioClip]


@dataclass
class RenderSpec:
    width: int
    height: int
    timeline: list[TimelineItem] = field(default_factory=list)
    quality: str = "23"
    extension: str = "mp4"
    scaling: ScalingMode = ScalingMode.cover
    subtitles: str | None = None

    @staticmethod
    def parse_resolution(resolution: str) -> tuple[int, int]:
        """Parse "WxH" into positive integers."""
        try:
            w, h = (int(v) for v in resolution.lower().split("x"))
        except (ValueError, AttributeError):
            raise ValidationError(
                "Invalid resolution format. Expected 'widthxheight' (e.g. '1280x720')"
            ) from None
        if w <= 0 or h <= 0:
            raise ValidationError(f"Invalid resolution: {resolution}")
        return w, h


# ── Resolved timeline ────────────────────────────────────────────────────────

@dataclass
class ResolvedItem:
    item: TimelineItem
    start: float
    duration: float
    path: Path | None = None
    has_audio: bool = False

    @property
    def end(self) -> float:
        return self.start + self.duration

    @property
    def cut_start(self) -> float:
        cut = getattr(self.item, "cut", None)
        return cut[0] if cut else 0.0


@dataclass
class ResolvedTimeline:
    items: list[ResolvedItem]
    total_duration: float

    def of_type(self, *types: type) -> list[ResolvedItem]:
        return [r for r in self.items if isinstance(r.item, types)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_duration": self.total_duration,
            "items": [
                {"type": type(r.item).__name__, "start": r.start, "duration": r.duration,
                 "path": str(r.path) if r.path else None}
                for r in self.items
            ],
        }


def _cut_length(item: VideoClip | AudioClip) -> float | None:
    if not item.cut:
        return None
    start, end = item.cut
    if start < 0:
        raise ValidationError(f"Invalid cut points for {item.filename}: start must not be negative")
    return end - start


class TimelineResolver:
    """Assign absolute start times and durations to every timeline item.

    Args:
        resolve_asset: maps a filename to an absolute path, raising
            ValidationError when the asset does not exist.
        prober: per-job probe cache.
        fallback_duration: used when a probe fails or reports no duration.
    """

    def __init__(
        self,
        resolve_asset: Callable[[str], Path],
        prober: CachingProber,
        fallback_duration: float = FALLBACK_DURATION,
    ):
        self.resolve_asset = resolve_asset
        self.prober = prober
        self.fallback_duration = fallback_duration

    def resolve(self, spec: RenderSpec) -> ResolvedTimeline:
        from ffmux.video.subtitles import parse_srt

        if not spec.timeline:
            raise ValidationError("empty timeline")

        items: list[TimelineItem] = list(spec.timeline)
        if spec.subtitles:
            items.extend(parse_srt(spec.subtitles))

        # every asset must exist before anything is probed
        paths: dict[int, Path] = {}
        for i, item in enumerate(items):
            if isinstance(item, TextOverlay):
                continue
            try:
                paths[i] = self.resolve_asset(item.filename)
            except ValidationError:
                raise ValidationError(f"unresolved asset: {item.filename}") from None

        probes = self.prober.probe_many(
            paths[i] for i, item in enumerate(items) if self._needs_probe(item)
        )

        resolved: list[ResolvedItem] = []
        cursor = 0.0
        total = 0.0
        for i, item in enumerate(items):
            path = paths.get(i)
            probe = probes.get(path) if path else None

            if isinstance(item, VideoClip):
                duration = _cut_length(item)
                if duration is None:
                    duration = self._probed_duration(probe)
                if duration <= 0:
                    raise ValidationError(f"non-positive segment: {item.filename}")
                r = ResolvedItem(item, cursor, duration, path, has_audio=bool(probe and probe.has_audio))
                cursor += duration
                total = max(total, cursor)
            elif isinstance(item, ImageClip):
                if item.duration <= 0:
                    raise ValidationError(f"non-positive segment: {item.filename}")
                r = ResolvedItem(item, cursor, item.duration, path)
                cursor += item.duration
                total = max(total, cursor)
            elif isinstance(item, AudioClip):
                cut_length = _cut_length(item)
                duration = item.duration if item.duration is not None else cut_length
                if duration is None:
                    duration = self._probed_duration(probe)
                if duration <= 0:
                    raise ValidationError(f"non-positive segment: {item.filename}")
                start = item.start_time if item.start_time is not None else cursor
                if start < 0:
                    raise ValidationError(f"negative start time: {item.filename}")
                r = ResolvedItem(item, start, duration, path, has_audio=True)
                total = max(total, r.end)
            else:
                r = ResolvedItem(item, max(0.0, item.start_time), max(0.0, item.duration))
            resolved.append(r)

        timeline = ResolvedTimeline(resolved, total)
        debug(f"[timeline] {len(resolved)} items, total {total:.2f}s")
        render_log(f"Resolved timeline: {len(resolved)} items, total_duration={total:.3f}s")
        return timeline

    def _needs_probe(self, item: TimelineItem) -> bool:
        if isinstance(item, VideoClip):
            # audio presence matters whenever the clip is audible
            return item.cut is None or item.volume > 0
        if isinstance(item, AudioClip):
            return item.duration is None and item.cut is None
        return False

    def _probed_duration(self, probe: ProbeResult | None) -> float:
        if probe is None or probe.duration <= 0:
            return self.fallback_duration
        return probe.duration
