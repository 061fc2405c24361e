"""Pydantic schemas for API request/response models."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ffmux.video.scaling import ScalingMode
from ffmux.video.timeline import (
    AudioClip,
    ImageClip,
    RenderSpec,
    TextOverlay,
    TimelineItem,
    VideoClip,
)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


def _check_cut(cut: list[float] | None) -> list[float] | None:
    if cut is None:
        return None
    if len(cut) != 2:
        raise ValueError("cut must be [start, end]")
    start, end = cut
    if start < 0:
        raise ValueError("cut start must not be negative")
    if end <= start:
        raise ValueError("cut end must be greater than cut start")
    return cut


# ── Timeline items ───────────────────────────────────────────────────────────

class VideoItem(_WireModel):
    type: Literal["video"]
    filename: str = Field(..., min_length=1)
    cut: list[float] | None = None
    volume: float = Field(default=100, ge=0, le=100)
    scaling: ScalingMode | None = None

    @field_validator("scaling", mode="before")
    @classmethod
    def parse_scaling(cls, v: Any) -> ScalingMode | None:
        return None if v in (None, "") else ScalingMode.parse(v)

    @field_validator("cut")
    @classmethod
    def check_cut(cls, v: list[float] | None) -> list[float] | None:
        return _check_cut(v)

    def to_item(self) -> VideoClip:
        return VideoClip(
            filename=self.filename,
            cut=tuple(self.cut) if self.cut else None,
            volume=self.volume,
            scaling=self.scaling,
        )


class ImageItem(_WireModel):
    type: Literal["image"]
    filename: str = Field(..., min_length=1)
    duration: float = Field(default=5.0, gt=0)
    scaling: ScalingMode | None = None

    @field_validator("scaling", mode="before")
    @classmethod
    def parse_scaling(cls, v: Any) -> ScalingMode | None:
        return None if v in (None, "") else ScalingMode.parse(v)

    def to_item(self) -> ImageClip:
        return ImageClip(filename=self.filename, duration=self.duration, scaling=self.scaling)


class AudioItem(_WireModel):
    type: Literal["audio"]
    filename: str = Field(..., min_length=1)
    start_time: float | None = Field(default=None, alias="startTime", ge=0)
    cut: list[float] | None = None
    duration: float | None = Field(default=None, gt=0)
    volume: float = Field(default=100, ge=0, le=100)

    @field_validator("cut")
    @classmethod
    def check_cut(cls, v: list[float] | None) -> list[float] | None:
        return _check_cut(v)

    def to_item(self) -> AudioClip:
        return AudioClip(
            filename=self.filename,
            start_time=self.start_time,
            cut=tuple(self.cut) if self.cut else None,
            duration=self.duration,
            volume=self.volume,
        )


class TextItem(_WireModel):
    type: Literal["text"]
    text: str = Field(..., min_length=1)
    style: str = "basic"
    font_size: int | None = Field(default=None, alias="fontSize", gt=0)
    position: str | dict[str, str | int | float] = "middle-center"
    start_time: float = Field(default=0, alias="startTime", ge=0)
    duration: float = Field(default=5.0, ge=0)

    def drawtext_position(self) -> str | dict[str, str]:
        # numeric x/y are plain drawtext expressions
        if isinstance(self.position, dict):
            return {k: str(v) for k, v in self.position.items()}
        return self.position

    def to_item(self) -> TextOverlay:
        return TextOverlay(
            text=self.text,
            style=self.style,
            font_size=self.font_size,
            position=self.drawtext_position(),
            start_time=self.start_time,
            duration=self.duration,
        )


TimelineEntry = Annotated[
    Union[VideoItem, ImageItem, AudioItem, TextItem],
    Field(discriminator="type"),
]


# ── Render request ───────────────────────────────────────────────────────────

class RenderRequest(_WireModel):
    resolution: str = "1280x720"
    quality: str = "23"
    extension: str = "mp4"
    scaling: ScalingMode = ScalingMode.cover
    timeline: list[TimelineEntry] = Field(default_factory=list)
    subtitles: str | None = None

    @field_validator("scaling", mode="before")
    @classmethod
    def parse_scaling(cls, v: Any) -> ScalingMode:
        return ScalingMode.parse(v)

    @field_validator("quality", mode="before")
    @classmethod
    def check_quality(cls, v: Any) -> str:
        text = str(v).strip()
        if not re.fullmatch(r"\d{1,2}", text) or int(text) > 51:
            raise ValueError("quality must be a CRF value between 0 and 51")
        return text

    @field_validator("extension")
    @classmethod
    def normalize_extension(cls, v: str) -> str:
        ext = v.lower().lstrip(".")
        if not re.fullmatch(r"[a-z0-9]{1,8}", ext):
            raise ValueError(f"invalid extension: {v}")
        return ext

    @model_validator(mode="after")
    def require_timeline(self) -> RenderRequest:
        if not self.timeline:
            raise ValueError("Invalid timeline: at least one item is required")
        return self

    def to_spec(self) -> RenderSpec:
        """Raises ffmux ValidationError for a malformed resolution."""
        width, height = RenderSpec.parse_resolution(self.resolution)
        items: list[TimelineItem] = [entry.to_item() for entry in self.timeline]
        return RenderSpec(
            width=width,
            height=height,
            timeline=items,
            quality=self.quality,
            extension=self.extension,
            scaling=self.scaling,
            subtitles=self.subtitles,
        )


# ── Responses ────────────────────────────────────────────────────────────────

class RenderResponse(BaseModel):
    jobId: str
    status: str = "processing"


class JobStatusResponse(BaseModel):
    status: str
    progress: int = 0
    error: str | None = None
    errorKind: str | None = None
    duration: int = 0  # milliseconds since the job was accepted


class FileInfo(BaseModel):
    filename: str
    size: int
    created: datetime
    modified: datetime
    extension: str
    path: str


class FileListResponse(BaseModel):
    total: int
    files: list[FileInfo]


class UploadResponse(BaseModel):
    filename: str
    size: int
    mimetype: str | None = None


class DeleteRequest(BaseModel):
    filename: str = ""


class DeleteResponse(BaseModel):
    message: str = "File deleted successfully"
    filename: str


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "1.0.0"
    ffmpeg: bool = False
    ffprobe: bool = False
    queue: dict[str, Any] = {}
