"""Configuration management with YAML support and pydantic models."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class StorageConfig(BaseModel):
    upload_dir: str = "data/uploads"
    output_dir: str = "data/outputs"
    fonts_dir: str = "fonts"


class RenderingConfig(BaseModel):
    max_concurrent: int = Field(default=1, ge=1)  # Env: MAX_RENDER_JOBS
    ffmpeg_threads: int = 0   # 0 = let ffmpeg decide. Env: FFMPEG_THREADS
    nice: int = 10            # Process priority (Linux, 0-19). Env: MEDIA_NICE
    render_timeout_seconds: float = 0  # 0 = no timeout
    max_finished_jobs: int = 200       # finished/failed jobs kept for status queries


class EncodingConfig(BaseModel):
    video_codec: str = "libx264"
    preset: str = "veryfast"
    frame_rate: int = 30
    image_frame_rate: int = 30
    pix_fmt: str = "yuv420p"
    profile: str = "main"
    level: str = "4.0"
    maxrate: str = "4M"
    bufsize: str = "8M"
    audio_codec: str = "aac"
    audio_bitrate: str = "192k"


class ProbeConfig(BaseModel):
    fallback_duration: float = Field(default=5.0, gt=0)
    timeout: int = 30
    parallelism: int = Field(default=4, ge=1)


class FontsConfig(BaseModel):
    download_on_startup: bool = False


class AppConfig(BaseModel):
    storage: StorageConfig = StorageConfig()
    rendering: RenderingConfig = RenderingConfig()
    encoding: EncodingConfig = EncodingConfig()
    probe: ProbeConfig = ProbeConfig()
    fonts: FontsConfig = FontsConfig()


# Environment variables that override YAML values
_ENV_OVERRIDES = {
    "MAX_RENDER_JOBS": ("rendering.max_concurrent", int),
    "FFMPEG_THREADS": ("rendering.ffmpeg_threads", int),
    "MEDIA_NICE": ("rendering.nice", int),
    "RENDER_TIMEOUT": ("rendering.render_timeout_seconds", float),
    "FFMUX_UPLOAD_DIR": ("storage.upload_dir", str),
    "FFMUX_OUTPUT_DIR": ("storage.output_dir", str),
    "FFMUX_FONTS_DIR": ("storage.fonts_dir", str),
}


def load_config(path: str | Path | None = None) -> AppConfig:
    if path is None:
        env_path = os.environ.get("FFMUX_CONFIG")
        candidates = [Path(env_path)] if env_path else []
        candidates += [Path("config.yaml"), Path("config.yml"), Path("ffmux.yaml")]
        for c in candidates:
            if c.exists():
                path = c
                break
    cfg = AppConfig()
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p) as f:
                data = yaml.safe_load(f) or {}
            cfg = AppConfig(**data)

    env_values = {}
    for var, (key, cast) in _ENV_OVERRIDES.items():
        raw = os.environ.get(var)
        if raw:
            env_values[key] = cast(raw)
    return merge_cli_overrides(cfg, env_values) if env_values else cfg


def merge_cli_overrides(cfg: AppConfig, overrides: dict[str, Any]) -> AppConfig:
    data = cfg.model_dump()
    for key, val in overrides.items():
        if val is None:
            continue
        parts = key.split(".")
        d = data
        for p in parts[:-1]:
            d = d.setdefault(p, {})
        d[parts[-1]] = val
    return AppConfig(**data)


DEFAULT_CONFIG_YAML = """\
# ffmux configuration

storage:
  upload_dir: data/uploads     # Env: FFMUX_UPLOAD_DIR
  output_dir: data/outputs     # Env: FFMUX_OUTPUT_DIR
  fonts_dir: fonts             # Env: FFMUX_FONTS_DIR

rendering:
  max_concurrent: 1            # Max parallel ffmpeg renders, others wait. Env: MAX_RENDER_JOBS
  ffmpeg_threads: 0            # 0 = ffmpeg default. Env: FFMPEG_THREADS
  nice: 10                     # Process priority 0-19 (Linux only). Env: MEDIA_NICE
  render_timeout_seconds: 0    # 0 = no timeout. Env: RENDER_TIMEOUT
  max_finished_jobs: 200

encoding:
  video_codec: libx264
  preset: veryfast
  frame_rate: 30
  image_frame_rate: 30         # still images are looped at this rate
  pix_fmt: yuv420p
  profile: main
  level: "4.0"
  maxrate: 4M
  bufsize: 8M
  audio_codec: aac
  audio_bitrate: 192k

probe:
  fallback_duration: 5.0       # used when ffprobe fails
  timeout: 30
  parallelism: 4

fonts:
  download_on_startup: false
"""
