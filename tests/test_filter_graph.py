"""Tests for the filter graph compiler and label bookkeeping."""

from __future__ import annotations

from pathlib import Path

import pytest

from ffmux.exceptions import GraphError
from ffmux.video.filter_graph import (
    AudioPlacementStatement,
    ConcatStatement,
    DrawTextStatement,
    FilterGraphBuilder,
    FilterProgram,
    MixStatement,
    ResampleStatement,
    ScaleStatement,
    StreamRef,
    VolumeStatement,
    fmt_num,
)
from ffmux.video.timeline import AudioClip, ImageClip, RenderSpec, TextOverlay, VideoClip


@pytest.fixture
def compile_timeline(resolver, storage_root):
    def _compile(*items, width=1280, height=720, subtitles=None):
        spec = RenderSpec(width=width, height=height, timeline=list(items), subtitles=subtitles)
        timeline = resolver.resolve(spec)
        builder = FilterGraphBuilder(width, height, fonts_dir=storage_root / "fonts")
        return builder.build(timeline, spec.scaling)
    return _compile


class TestVideoTrack:
    def test_cut_video_then_image(self, compile_timeline):
        build = compile_timeline(VideoClip("clip.mp4", cut=(0, 5)), ImageClip("still.png", 3))
        assert len(build.inputs) == 2
        assert build.inputs[0].options == ["-ss", "0", "-t", "5"]
        assert build.inputs[1].options == ["-framerate", "30", "-loop", "1", "-t", "3"]

        (concat,) = build.program.of_type(ConcatStatement)
        assert concat.durations == (5, 3)
        assert concat.inputs == ("v0", "v1")
        assert build.video_label == "vcat"

    def test_single_clip_has_no_concat(self, compile_timeline):
        build = compile_timeline(VideoClip("clip.mp4"))
        assert build.program.of_type(ConcatStatement) == []
        assert build.video_label == "v0"

    def test_scale_uses_item_mode_over_default(self, compile_timeline):
        build = compile_timeline(ImageClip("still.png", 1, scaling="fill"), ImageClip("still.png", 1))
        first, second = build.program.of_type(ScaleStatement)
        assert first.expression == "scale=1280:720,setsar=1"
        assert "crop=1280:720" in second.expression

    def test_audio_only_timeline_is_rejected(self, compile_timeline):
        with pytest.raises(GraphError, match="no video track"):
            compile_timeline(AudioClip("music.mp3"))

    def test_concat_render_holds_each_segment(self, compile_timeline):
        build = compile_timeline(ImageClip("still.png", 2), ImageClip("still.png", 2.5))
        graph = build.program.render()
        assert "[v0]trim=duration=2,setpts=PTS-STARTPTS[vcat_s0]" in graph
        assert "[v1]trim=duration=2.5,setpts=PTS-STARTPTS[vcat_s1]" in graph
        assert "[vcat_s0][vcat_s1]concat=n=2:v=1:a=0[vcat]" in graph


class TestAudioTrack:
    def test_overlay_delay_without_volume(self, compile_timeline):
        build = compile_timeline(
            ImageClip("still.png", 5), AudioClip("music.mp3", start_time=2.5),
        )
        (placement,) = build.program.of_type(AudioPlacementStatement)
        assert placement.body() == "adelay=2500:all=1"
        assert "[1:a]adelay=2500:all=1[o0]" in build.program.render()
        assert build.program.of_type(VolumeStatement) == []

    def test_overlay_identity_at_zero(self, compile_timeline):
        build = compile_timeline(ImageClip("still.png", 5), AudioClip("music.mp3", start_time=0))
        (placement,) = build.program.of_type(AudioPlacementStatement)
        assert placement.body() == "anull"

    def test_overlay_volume(self, compile_timeline):
        build = compile_timeline(
            ImageClip("still.png", 5), AudioClip("music.mp3", start_time=1, volume=50),
        )
        (placement,) = build.program.of_type(AudioPlacementStatement)
        assert placement.body() == "adelay=1000:all=1,volume=0.5"

    def test_audio_cut_trims_input(self, compile_timeline):
        build = compile_timeline(
            ImageClip("still.png", 5), AudioClip("music.mp3", start_time=0, cut=(3, 7)),
        )
        assert build.inputs[1].options == ["-ss", "3", "-t", "4"]

    def test_single_source_is_resampled(self, compile_timeline):
        build = compile_timeline(VideoClip("clip.mp4"))
        (resample,) = build.program.of_type(ResampleStatement)
        assert resample.inputs == ("a0",)
        assert build.audio_label == "aout"
        assert build.has_audio

    def test_clip_audio_concat_and_mix(self, compile_timeline):
        build = compile_timeline(
            VideoClip("clip.mp4", cut=(0, 2)),
            VideoClip("clip2.mp4", volume=40),
            AudioClip("music.mp3", start_time=0),
        )
        audio_concat = [c for c in build.program.of_type(ConcatStatement) if c.audio]
        assert len(audio_concat) == 1
        assert audio_concat[0].durations == (2, 4.0)
        (mix,) = build.program.of_type(MixStatement)
        assert mix.inputs == ("acat", "o0")
        assert mix.body() == "amix=inputs=2:duration=longest:dropout_transition=2"

    def test_muted_and_silent_clips_add_no_audio(self, compile_timeline):
        build = compile_timeline(VideoClip("clip.mp4", volume=0), VideoClip("silent.mp4"))
        assert build.audio_label is None
        assert not build.has_audio
        assert build.program.of_type(VolumeStatement) == []


class TestTextOverlays:
    def test_chain_after_reduction(self, compile_timeline):
        build = compile_timeline(
            ImageClip("still.png", 2), ImageClip("still.png", 2),
            TextOverlay("one", start_time=0, duration=1),
            TextOverlay("two", start_time=1, duration=2),
        )
        first, second = build.program.of_type(DrawTextStatement)
        assert first.inputs == ("vcat",)
        assert second.inputs == (first.output,)
        assert build.video_label == second.output

    def test_window_on_output_timeline(self, compile_timeline):
        build = compile_timeline(
            ImageClip("still.png", 10), TextOverlay("hello", start_time=1.5, duration=2),
        )
        body = build.program.of_type(DrawTextStatement)[0].body()
        assert "enable='gte(t,1.5)*lt(t,3.5)'" in body
        assert "text='hello'" in body

    def test_style_preset_applied(self, compile_timeline, storage_root):
        build = compile_timeline(
            ImageClip("still.png", 3),
            TextOverlay("x", style="tiktok", font_size=40, position="top-left"),
        )
        body = build.program.of_type(DrawTextStatement)[0].body()
        assert "fontsize=40" in body
        assert "borderw=4" in body
        assert "box=1" in body and "boxcolor=black@0.5" in body
        assert "x='50'" in body and "y='50'" in body
        assert "Roboto-Black.ttf" in body

    def test_unknown_style_is_graph_error(self, compile_timeline):
        with pytest.raises(GraphError, match="Invalid text style"):
            compile_timeline(ImageClip("still.png", 3), TextOverlay("x", style="comic"))

    def test_subtitle_overlays_follow_explicit_text(self, compile_timeline):
        srt = "1\n00:00:00,500 --> 00:00:01,000\nsub\n"
        build = compile_timeline(
            ImageClip("still.png", 3), TextOverlay("title"), subtitles=srt,
        )
        texts = [s.text for s in build.program.of_type(DrawTextStatement)]
        assert texts == ["title", "sub"]


class TestFilterProgram:
    def test_dangling_label(self):
        program = FilterProgram(input_count=1)
        with pytest.raises(GraphError, match="dangling"):
            program.add(ResampleStatement(inputs=("nowhere",), output="aout"))

    def test_unknown_input_stream(self):
        program = FilterProgram(input_count=1)
        with pytest.raises(GraphError, match="unknown input"):
            program.add(VolumeStatement(inputs=(StreamRef(3, "a"),), output="a0"))

    def test_label_consumed_twice(self):
        program = FilterProgram(input_count=1)
        program.add(VolumeStatement(inputs=(StreamRef(0, "a"),), output="a0"))
        program.add(ResampleStatement(inputs=("a0",), output="x"))
        with pytest.raises(GraphError, match="consumed twice"):
            program.add(ResampleStatement(inputs=("a0",), output="y"))

    def test_label_produced_twice(self):
        program = FilterProgram(input_count=2)
        program.add(VolumeStatement(inputs=(StreamRef(0, "a"),), output="a0"))
        with pytest.raises(GraphError, match="produced twice"):
            program.add(VolumeStatement(inputs=(StreamRef(1, "a"),), output="a0"))

    def test_validate_unconsumed_label(self):
        program = FilterProgram(input_count=2)
        program.add(ScaleStatement(inputs=(StreamRef(0, "v"),), output="v0", expression="null"))
        program.add(ScaleStatement(inputs=(StreamRef(1, "v"),), output="v1", expression="null"))
        with pytest.raises(GraphError, match="never consumed"):
            program.validate("v1", None)

    def test_every_built_label_is_consumed(self, compile_timeline):
        build = compile_timeline(
            VideoClip("clip.mp4", cut=(1, 3)), ImageClip("still.png", 2),
            AudioClip("music.mp3", start_time=1), TextOverlay("t"),
        )
        # validate() already ran inside build(); running it again must be a no-op
        build.program.validate(build.video_label, build.audio_label)


class TestFormatting:
    @pytest.mark.parametrize("value,expected", [
        (5.0, "5"), (2.5, "2.5"), (0, "0"), (1 / 3, "0.333333"), (-0.0, "0"),
    ])
    def test_fmt_num(self, value, expected):
        assert fmt_num(value) == expected

    def test_input_args(self, compile_timeline):
        build = compile_timeline(ImageClip("still.png", 1))
        args = build.inputs[0].args()
        assert args[-2] == "-i"
        assert Path(args[-1]).name == "still.png"
