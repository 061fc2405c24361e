"""Render pipeline: RenderSpec → resolved timeline → graph → ffmpeg run.

Resolution and planning are split so that callers can reject a request
(ValidationError) before any job exists, then plan and encode inside the
job where GraphError and EncodeError are recorded as failures.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from ffmux.exceptions import EncodeError, RenderCancelled
from ffmux.utils.config import AppConfig
from ffmux.utils.logging import info, render_log
from ffmux.video.command import RenderInvocation, build_ffmpeg_command
from ffmux.video.filter_graph import FilterGraphBuilder, GraphBuild
from ffmux.video.probe import CachingProber, FFprobeProber, MediaProber
from ffmux.video.progress import ProgressTranslator
from ffmux.video.timeline import RenderSpec, ResolvedTimeline, TimelineResolver

ProgressCallback = Callable[[int], None]


@dataclass
class RenderPlan:
    spec: RenderSpec
    timeline: ResolvedTimeline
    graph: GraphBuild
    command: list[str]
    output_path: Path

    @property
    def total_duration(self) -> float:
        return self.timeline.total_duration


def resolve_render(
    spec: RenderSpec,
    resolve_asset: Callable[[str], Path],
    config: AppConfig | None = None,
    prober: MediaProber | None = None,
) -> ResolvedTimeline:
    """Resolve timing for every item.  Raises ValidationError."""
    cfg = config or AppConfig()
    caching = CachingProber(
        prober or FFprobeProber(timeout=cfg.probe.timeout),
        parallelism=cfg.probe.parallelism,
    )
    resolver = TimelineResolver(resolve_asset, caching, cfg.probe.fallback_duration)
    return resolver.resolve(spec)


def plan_render(
    spec: RenderSpec,
    timeline: ResolvedTimeline,
    output_dir: Path,
    config: AppConfig | None = None,
) -> RenderPlan:
    """Compile the filter graph and ffmpeg argv.  Raises GraphError."""
    cfg = config or AppConfig()
    builder = FilterGraphBuilder(
        spec.width, spec.height,
        fonts_dir=Path(cfg.storage.fonts_dir),
        image_frame_rate=cfg.encoding.image_frame_rate,
    )
    graph = builder.build(timeline, spec.scaling)
    output_path = Path(output_dir) / f"{uuid.uuid4()}.{spec.extension}"
    cmd = build_ffmpeg_command(graph, output_path, spec.quality, spec.extension, cfg.encoding)
    return RenderPlan(spec, timeline, graph, cmd, output_path)


def compile_render(
    spec: RenderSpec,
    resolve_asset: Callable[[str], Path],
    output_dir: Path,
    config: AppConfig | None = None,
    prober: MediaProber | None = None,
) -> RenderPlan:
    timeline = resolve_render(spec, resolve_asset, config, prober)
    return plan_render(spec, timeline, output_dir, config)


def execute_render(
    plan: RenderPlan,
    on_progress: ProgressCallback | None = None,
    cancel_event=None,
    timeout: float | None = None,
    description: str = "render",
) -> Path:
    """Run ffmpeg for a plan and return the output path.

    on_progress(percent) is called with strictly increasing percentages.

    Raises:
        EncodeError: ffmpeg failed or produced no file.
        RenderCancelled: stopped by cancel_event or timeout.
    """
    plan.output_path.parent.mkdir(parents=True, exist_ok=True)
    translator = ProgressTranslator(plan.total_duration)
    invocation = RenderInvocation(
        plan.command, plan.output_path,
        description=description, cancel_event=cancel_event, timeout=timeout,
    )
    info(f"[render] {description}: {plan.total_duration:.1f}s → {plan.output_path.name}")
    render_log(f"Duration: {plan.total_duration:.1f}s")

    for event in invocation.events():
        if event.kind == "progress":
            pct = translator.update(event.elapsed)
            if pct is not None and on_progress:
                on_progress(pct)
        elif event.kind == "finished":
            return event.output
        elif event.kind == "failed":
            if event.error_kind in ("cancelled", "timeout"):
                raise RenderCancelled(event.message, kind=event.error_kind)
            raise EncodeError(event.message)
    raise EncodeError("ffmpeg ended without a result")
