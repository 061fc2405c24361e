"""Filter graph compiler: resolved timeline → ffmpeg inputs + filter program.

Statements are typed and only rendered to ffmpeg's filtergraph syntax at the
end.  The program tracks labels as statements are added, so a statement can
only consume a label that an earlier statement produced (or a raw input
stream), and every label is produced exactly once.

Graph layout:
  video/image clips → scale → [v0] [v1] …  → concat → [vcat]
  [vcat] → drawtext → [t0] → drawtext → [t1] …            (terminal video)
  clip audio → volume → [a0] [a1] …        → concat → [acat]
  audio clips → adelay/volume → [o0] [o1] …
  [acat] + [o*] → amix (or aresample for a single source)  (terminal audio)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from ffmux.exceptions import GraphError
from ffmux.utils.logging import debug, render_log
from ffmux.video.scaling import ScalingMode, build_scaling_filter
from ffmux.video.text_styles import (
    TextStyle,
    escape_text,
    font_path,
    quote_value,
    resolve_position,
    resolve_style,
)
from ffmux.video.timeline import (
    AudioClip,
    ImageClip,
    ResolvedItem,
    ResolvedTimeline,
    TextOverlay,
    VideoClip,
)

MIX_DROPOUT_TRANSITION = 2


def fmt_num(value: float) -> str:
    """Format a number for ffmpeg without float noise (5.0 → "5", 2.5 → "2.5")."""
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


# ── Inputs ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class StreamRef:
    """A raw input stream, e.g. 0:v or 2:a."""
    index: int
    kind: str  # "v" | "a"

    def __str__(self) -> str:
        return f"{self.index}:{self.kind}"


@dataclass
class MediaInput:
    path: Path
    options: list[str] = field(default_factory=list)

    def args(self) -> list[str]:
        return [*self.options, "-i", str(self.path)]


# ── Statements ────────────────────────────────────────────────────────────────

@dataclass
class FilterStatement:
    inputs: tuple[StreamRef | str, ...]
    output: str

    def body(self) -> str:
        raise NotImplementedError

    def render(self) -> str:
        ins = "".join(f"[{p}]" for p in self.inputs)
        return f"{ins}{self.body()}[{self.output}]"


@dataclass
class ScaleStatement(FilterStatement):
    expression: str = ""

    def body(self) -> str:
        return self.expression


@dataclass
class VolumeStatement(FilterStatement):
    volume: float = 1.0

    def body(self) -> str:
        return f"volume={fmt_num(self.volume)}"


@dataclass
class AudioPlacementStatement(FilterStatement):
    """Delay (and optionally rescale) an overlay audio clip."""
    delay_ms: int = 0
    volume: float | None = None

    def body(self) -> str:
        parts = []
        if self.delay_ms > 0:
            # all=1 delays every channel by the same amount
            parts.append(f"adelay={self.delay_ms}:all=1")
        if self.volume is not None:
            parts.append(f"volume={fmt_num(self.volume)}")
        return ",".join(parts) or "anull"


@dataclass
class ConcatStatement(FilterStatement):
    """Concatenate segments, each held to its resolved duration."""
    durations: tuple[float, ...] = ()
    audio: bool = False

    @property
    def segments(self) -> list[tuple[str, float]]:
        return [(str(p), d) for p, d in zip(self.inputs, self.durations)]

    def render(self) -> str:
        chains = []
        held = []
        for i, (label, duration) in enumerate(self.segments):
            seg = f"{self.output}_s{i}"
            if self.audio:
                hold = f"apad,atrim=duration={fmt_num(duration)},asetpts=PTS-STARTPTS"
            else:
                hold = f"trim=duration={fmt_num(duration)},setpts=PTS-STARTPTS"
            chains.append(f"[{label}]{hold}[{seg}]")
            held.append(f"[{seg}]")
        n = len(self.inputs)
        v, a = (0, 1) if self.audio else (1, 0)
        chains.append(f"{''.join(held)}concat=n={n}:v={v}:a={a}[{self.output}]")
        return ";".join(chains)


@dataclass
class DrawTextStatement(FilterStatement):
    text: str = ""
    style: TextStyle = field(default_factory=TextStyle)
    font_file: Path | None = None
    x: str = "(w-text_w)/2"
    y: str = "(h-text_h)/2"
    start: float = 0
    duration: float = 0

    def body(self) -> str:
        s = self.style
        opts = []
        if self.font_file is not None:
            opts.append(f"fontfile={quote_value(str(self.font_file))}")
        opts += [
            f"fontsize={s.font_size}",
            f"fontcolor={s.font_color}",
            f"x={quote_value(self.x)}",
            f"y={quote_value(self.y)}",
            f"text={escape_text(self.text)}",
            # half-open window on the output timeline
            f"enable={quote_value(f'gte(t,{fmt_num(self.start)})*lt(t,{fmt_num(self.start + self.duration)})')}",
        ]
        if s.border_color and s.border_width:
            opts += [f"bordercolor={s.border_color}", f"borderw={s.border_width}"]
        if s.box_color:
            opts += ["box=1", f"boxcolor={s.box_color}"]
            if s.box_border_width:
                opts.append(f"boxborderw={s.box_border_width}")
        return "drawtext=" + ":".join(opts)


@dataclass
class ResampleStatement(FilterStatement):
    def body(self) -> str:
        return "aresample=async=1"


@dataclass
class MixStatement(FilterStatement):
    def body(self) -> str:
        return (
            f"amix=inputs={len(self.inputs)}:duration=longest"
            f":dropout_transition={MIX_DROPOUT_TRANSITION}"
        )


# ── Program ───────────────────────────────────────────────────────────────────

class FilterProgram:
    """Ordered, label-checked list of filter statements."""

    def __init__(self, input_count: int = 0):
        self.statements: list[FilterStatement] = []
        self.input_count = input_count
        self._produced: set[str] = set()
        self._consumed: set[str] = set()

    def add(self, stmt: FilterStatement) -> str:
        for pad in stmt.inputs:
            if isinstance(pad, StreamRef):
                if not 0 <= pad.index < self.input_count:
                    raise GraphError(f"statement references unknown input {pad}")
                continue
            if pad not in self._produced:
                raise GraphError(f"dangling label [{pad}]")
            if pad in self._consumed:
                raise GraphError(f"label [{pad}] consumed twice")
            self._consumed.add(pad)
        if stmt.output in self._produced:
            raise GraphError(f"label [{stmt.output}] produced twice")
        self._produced.add(stmt.output)
        self.statements.append(stmt)
        return stmt.output

    def of_type(self, cls: type) -> list[FilterStatement]:
        return [s for s in self.statements if isinstance(s, cls)]

    def validate(self, video_label: str, audio_label: str | None) -> None:
        terminals = {video_label} | ({audio_label} if audio_label else set())
        missing = terminals - self._produced
        if missing:
            raise GraphError(f"terminal label never produced: {sorted(missing)}")
        dangling = self._produced - self._consumed - terminals
        if dangling:
            raise GraphError(f"labels produced but never consumed: {sorted(dangling)}")

    def render(self) -> str:
        return ";".join(s.render() for s in self.statements)

    def __len__(self) -> int:
        return len(self.statements)


@dataclass
class GraphBuild:
    inputs: list[MediaInput]
    program: FilterProgram
    video_label: str
    audio_label: str | None

    @property
    def has_audio(self) -> bool:
        return self.audio_label is not None


# ── Builder ───────────────────────────────────────────────────────────────────

class FilterGraphBuilder:
    """Compile a ResolvedTimeline into inputs and a FilterProgram.

    One builder compiles one timeline; create a new instance per render.
    """

    def __init__(self, width: int, height: int, fonts_dir: Path | None = None,
                 image_frame_rate: int = 30):
        self.width = width
        self.height = height
        self.fonts_dir = fonts_dir
        self.image_frame_rate = image_frame_rate

        self.inputs: list[MediaInput] = []
        self.program = FilterProgram()
        self.video_labels: list[tuple[str, float]] = []
        self.sequential_audio: list[tuple[str, float]] = []
        self.overlay_audio: list[str] = []
        self._counters: dict[str, int] = {}

    def _label(self, prefix: str) -> str:
        n = self._counters.get(prefix, 0)
        self._counters[prefix] = n + 1
        return f"{prefix}{n}"

    def _add_input(self, path: Path, options: list[str]) -> int:
        self.inputs.append(MediaInput(path, options))
        self.program.input_count = len(self.inputs)
        return len(self.inputs) - 1

    def build(self, timeline: ResolvedTimeline,
              default_scaling: ScalingMode | str = ScalingMode.cover) -> GraphBuild:
        texts: list[ResolvedItem] = []
        for r in timeline.items:
            if isinstance(r.item, VideoClip):
                self._add_video(r, default_scaling)
            elif isinstance(r.item, ImageClip):
                self._add_image(r, default_scaling)
            elif isinstance(r.item, AudioClip):
                self._add_audio(r)
            elif isinstance(r.item, TextOverlay):
                texts.append(r)

        video = self._reduce_video()
        for r in texts:
            video = self._add_text(video, r)
        audio = self._reduce_audio()

        self.program.validate(video, audio)
        graph = self.program.render()
        debug(f"[graph] {len(self.inputs)} inputs, {len(self.program)} statements")
        render_log(f"Filter complex ({len(self.program)} statements):\n{graph}")
        return GraphBuild(self.inputs, self.program, video, audio)

    # ── per item ──

    def _scale(self, index: int, item: VideoClip | ImageClip, default_scaling) -> str:
        mode = item.scaling or default_scaling
        return self.program.add(ScaleStatement(
            inputs=(StreamRef(index, "v"),), output=self._label("v"),
            expression=build_scaling_filter(mode, self.width, self.height),
        ))

    def _add_video(self, r: ResolvedItem, default_scaling) -> None:
        item: VideoClip = r.item
        index = self._add_input(r.path, [
            "-ss", fmt_num(r.cut_start),
            "-t", fmt_num(r.duration),
        ])
        self.video_labels.append((self._scale(index, item, default_scaling), r.duration))
        if item.volume > 0 and r.has_audio:
            label = self.program.add(VolumeStatement(
                inputs=(StreamRef(index, "a"),), output=self._label("a"),
                volume=item.volume / 100,
            ))
            self.sequential_audio.append((label, r.duration))

    def _add_image(self, r: ResolvedItem, default_scaling) -> None:
        index = self._add_input(r.path, [
            "-framerate", str(self.image_frame_rate),
            "-loop", "1",
            "-t", fmt_num(r.duration),
        ])
        self.video_labels.append((self._scale(index, r.item, default_scaling), r.duration))

    def _add_audio(self, r: ResolvedItem) -> None:
        item: AudioClip = r.item
        options = []
        if r.cut_start > 0:
            options += ["-ss", fmt_num(r.cut_start)]
        options += ["-t", fmt_num(r.duration)]
        index = self._add_input(r.path, options)
        label = self.program.add(AudioPlacementStatement(
            inputs=(StreamRef(index, "a"),), output=self._label("o"),
            delay_ms=round(r.start * 1000),
            volume=item.volume / 100 if item.volume != 100 else None,
        ))
        self.overlay_audio.append(label)

    def _add_text(self, video: str, r: ResolvedItem) -> str:
        item: TextOverlay = r.item
        style = resolve_style(item.style, item.font_size)
        x, y = resolve_position(item.position)
        return self.program.add(DrawTextStatement(
            inputs=(video,), output=self._label("t"),
            text=item.text, style=style,
            font_file=font_path(style, self.fonts_dir) if self.fonts_dir else None,
            x=x, y=y, start=r.start, duration=r.duration,
        ))

    # ── reductions ──

    def _reduce_video(self) -> str:
        if not self.video_labels:
            raise GraphError("no video track")
        if len(self.video_labels) == 1:
            return self.video_labels[0][0]
        labels, durations = zip(*self.video_labels)
        return self.program.add(ConcatStatement(
            inputs=tuple(labels), output="vcat", durations=tuple(durations),
        ))

    def _reduce_audio(self) -> str | None:
        sources: list[str] = []
        if len(self.sequential_audio) > 1:
            labels, durations = zip(*self.sequential_audio)
            sources.append(self.program.add(ConcatStatement(
                inputs=tuple(labels), output="acat", durations=tuple(durations), audio=True,
            )))
        elif self.sequential_audio:
            sources.append(self.sequential_audio[0][0])
        sources.extend(self.overlay_audio)

        if not sources:
            return None
        if len(sources) == 1:
            return self.program.add(ResampleStatement(inputs=(sources[0],), output="aout"))
        return self.program.add(MixStatement(inputs=tuple(sources), output="aout"))
