"""Tests for ffmpeg command assembly, output parsing and supervised execution.

Execution tests run small Python scripts in place of ffmpeg so the whole
event stream (progress, exit codes, cancellation) is exercised for real.
"""

from __future__ import annotations

import sys
import threading

import pytest

from ffmux.exceptions import EncodeError, RenderCancelled
from ffmux.utils.config import EncodingConfig
from ffmux.video.command import (
    RenderInvocation,
    build_ffmpeg_command,
    extract_ffmpeg_error,
    parse_ffmpeg_time,
)
from ffmux.video.filter_graph import FilterGraphBuilder
from ffmux.video.render import RenderPlan, execute_render
from ffmux.video.timeline import AudioClip, ImageClip, RenderSpec, ResolvedTimeline, VideoClip


@pytest.fixture
def graph_for(resolver):
    def _build(*items):
        spec = RenderSpec(width=1280, height=720, timeline=list(items))
        return FilterGraphBuilder(1280, 720).build(resolver.resolve(spec), spec.scaling)
    return _build


@pytest.fixture(autouse=True)
def _no_nice(monkeypatch):
    monkeypatch.setattr("ffmux.utils.media_executor.IS_LINUX", False)


def _flag(cmd: list[str], name: str) -> str:
    return cmd[cmd.index(name) + 1]


# ── Assembly ─────────────────────────────────────────────────────────────────

class TestBuildCommand:
    def test_video_with_audio(self, graph_for, tmp_path):
        build = graph_for(VideoClip("clip.mp4"))
        cmd = build_ffmpeg_command(build, tmp_path / "out.mp4", quality="20", extension="mp4")
        assert cmd[:3] == ["ffmpeg", "-y", "-hide_banner"]
        assert _flag(cmd, "-filter_complex") == build.program.render()
        maps = [cmd[i + 1] for i, a in enumerate(cmd) if a == "-map"]
        assert maps == ["[v0]", "[aout]"]
        assert _flag(cmd, "-crf") == "20"
        assert _flag(cmd, "-c:v") == "libx264"
        assert _flag(cmd, "-c:a") == "aac"
        assert _flag(cmd, "-b:a") == "192k"
        assert _flag(cmd, "-movflags") == "+faststart"
        assert _flag(cmd, "-fps_mode") == "cfr"
        assert _flag(cmd, "-progress") == "pipe:1"
        assert "-an" not in cmd
        assert cmd[-1] == str(tmp_path / "out.mp4")

    def test_silent_output_disables_audio(self, graph_for, tmp_path):
        build = graph_for(ImageClip("still.png", 2))
        cmd = build_ffmpeg_command(build, tmp_path / "out.mkv", extension="mkv")
        assert "-an" in cmd
        assert "-c:a" not in cmd
        assert cmd.count("-map") == 1
        assert "-movflags" not in cmd

    def test_encoding_from_config(self, graph_for, tmp_path):
        enc = EncodingConfig(preset="slow", frame_rate=25, maxrate="8M", audio_bitrate="128k")
        build = graph_for(ImageClip("still.png", 1), AudioClip("music.mp3", start_time=0))
        cmd = build_ffmpeg_command(build, tmp_path / "o.mp4", encoding=enc)
        assert _flag(cmd, "-preset") == "slow"
        assert _flag(cmd, "-r") == "25"
        assert _flag(cmd, "-maxrate") == "8M"
        assert _flag(cmd, "-b:a") == "128k"

    def test_inputs_precede_filter_graph(self, graph_for, tmp_path):
        build = graph_for(ImageClip("still.png", 1), ImageClip("still.png", 1))
        cmd = build_ffmpeg_command(build, tmp_path / "o.mp4")
        assert cmd.count("-i") == 2
        assert max(i for i, a in enumerate(cmd) if a == "-i") < cmd.index("-filter_complex")


class TestParsing:
    @pytest.mark.parametrize("line,expected", [
        ("out_time=00:00:01.500000", 1.5),
        ("out_time=01:02:03.250000\n", 3723.25),
        ("frame=  10 fps=0.0 q=28.0 size=0kB time=00:00:04.00 bitrate=N/A", 4.0),
        ("out_time=-00:00:00.023220", -0.02322),
        ("out_time_us=1500000", None),
        ("progress=continue", None),
    ])
    def test_parse_ffmpeg_time(self, line, expected):
        result = parse_ffmpeg_time(line)
        if expected is None:
            assert result is None
        else:
            assert result == pytest.approx(expected)

    def test_extract_error_strips_banner(self):
        stderr = (
            "ffmpeg version 6.1 Copyright (c) 2000-2023\n"
            "  built with gcc 13\n"
            "  configuration: --enable-gpl --enable-libx264\n"
            "  libavutil      58. 29.100 / 58. 29.100\n"
            "[in#0 @ 0x1] Error opening input: No such file or directory\n"
            "Error opening input file missing.mp4.\n"
        )
        msg = extract_ffmpeg_error(stderr)
        assert "Copyright" not in msg
        assert "configuration" not in msg
        assert msg.startswith("[in#0")
        assert msg.endswith("missing.mp4.")

    def test_extract_error_keeps_tail(self):
        stderr = "\n".join(f"line {i}" for i in range(40))
        msg = extract_ffmpeg_error(stderr).splitlines()
        assert len(msg) == 15
        assert msg[-1] == "line 39"


# ── Execution ────────────────────────────────────────────────────────────────

def _script(body: str, *args: str) -> list[str]:
    return [sys.executable, "-c", "import sys, time, pathlib\n" + body, *args]


OK_SCRIPT = (
    "print('frame=1', flush=True)\n"
    "print('out_time=00:00:01.000000', flush=True)\n"
    "print('out_time=00:00:02.500000', flush=True)\n"
    "print('progress=end', flush=True)\n"
    "sys.stderr.write('ffmpeg version test\\n')\n"
    "pathlib.Path(sys.argv[1]).write_bytes(b'video')\n"
)

SLOW_SCRIPT = (
    "print('out_time=00:00:00.500000', flush=True)\n"
    "time.sleep(30)\n"
)


class TestRenderInvocation:
    def test_success_event_stream(self, tmp_path):
        out = tmp_path / "out.mp4"
        events = list(RenderInvocation(_script(OK_SCRIPT, str(out)), out).events())
        kinds = [e.kind for e in events]
        assert kinds == ["started", "progress", "progress", "finished"]
        assert [e.elapsed for e in events if e.kind == "progress"] == [1.0, 2.5]
        assert events[-1].output == out
        assert sum(e.terminal for e in events) == 1

    def test_nonzero_exit_fails_with_stderr(self, tmp_path):
        out = tmp_path / "out.mp4"
        cmd = _script("sys.stderr.write('Invalid filtergraph\\n'); sys.exit(1)")
        events = list(RenderInvocation(cmd, out).events())
        assert events[-1].kind == "failed"
        assert events[-1].error_kind == "encode"
        assert "Invalid filtergraph" in events[-1].message

    def test_missing_output_fails(self, tmp_path):
        out = tmp_path / "never.mp4"
        events = list(RenderInvocation(_script("pass"), out).events())
        assert events[-1].kind == "failed"
        assert events[-1].message == "Output file not created"

    def test_unknown_binary_fails_without_starting(self, tmp_path):
        events = list(RenderInvocation(["/nonexistent/ffmpeg"], tmp_path / "o.mp4").events())
        assert [e.kind for e in events] == ["failed"]

    def test_cancel_terminates_process(self, tmp_path):
        out = tmp_path / "out.mp4"
        inv = RenderInvocation(_script(SLOW_SCRIPT), out)
        events = []
        for ev in inv.events():
            events.append(ev)
            if ev.kind == "progress":
                inv.cancel()
        assert events[-1].kind == "failed"
        assert events[-1].error_kind == "cancelled"

    def test_external_cancel_event(self, tmp_path):
        cancel = threading.Event()
        cancel.set()
        inv = RenderInvocation(_script(SLOW_SCRIPT), tmp_path / "o.mp4", cancel_event=cancel)
        assert list(inv.events())[-1].error_kind == "cancelled"

    def test_timeout(self, tmp_path):
        inv = RenderInvocation(_script(SLOW_SCRIPT), tmp_path / "o.mp4", timeout=0.5)
        last = list(inv.events())[-1]
        assert last.kind == "failed"
        assert last.error_kind == "timeout"


class TestExecuteRender:
    def _plan(self, cmd, out, total=2.5):
        return RenderPlan(spec=None, timeline=ResolvedTimeline([], total), graph=None,
                          command=cmd, output_path=out)

    def test_progress_callbacks_and_result(self, tmp_path):
        out = tmp_path / "renders" / "out.mp4"
        seen: list[int] = []
        result = execute_render(self._plan(_script(OK_SCRIPT, str(out)), out), on_progress=seen.append)
        assert result == out
        assert seen == [40, 100]

    def test_encode_error(self, tmp_path):
        out = tmp_path / "out.mp4"
        with pytest.raises(EncodeError, match="boom"):
            execute_render(self._plan(_script("sys.stderr.write('boom\\n'); sys.exit(2)"), out))

    def test_cancelled(self, tmp_path):
        cancel = threading.Event()
        cancel.set()
        with pytest.raises(RenderCancelled) as exc:
            execute_render(self._plan(_script(SLOW_SCRIPT), tmp_path / "o.mp4"), cancel_event=cancel)
        assert exc.value.kind == "cancelled"
