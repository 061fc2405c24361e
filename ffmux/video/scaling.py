"""Scaling filter synthesis, modelled on CSS object-fit.

fill      : stretch to exactly W×H (may distort)
contain   : fit inside W×H keeping aspect, pad the rest (may upscale)
cover     : fill W×H keeping aspect, crop the overflow (may upscale)
scale-down: like contain, but never larger than the source
none      : native size, downscaled only on axes that exceed the target, padded

Every chain ends with setsar=1 so concatenated segments agree on sample aspect.
"""

from __future__ import annotations

from enum import Enum


class ScalingMode(str, Enum):
    fill = "fill"
    contain = "contain"
    cover = "cover"
    scale_down = "scale-down"
    none = "none"

    @classmethod
    def parse(cls, value: str | ScalingMode | None) -> ScalingMode:
        """Lenient lookup: unknown or empty values fall back to cover."""
        if isinstance(value, ScalingMode):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.cover


def _pad(w: int, h: int) -> str:
    return f"pad={w}:{h}:(({w}-iw)/2):(({h}-ih)/2)"


def build_scaling_filter(mode: str | ScalingMode | None, width: int, height: int) -> str:
    """Return the scale/pad/crop chain for one clip, ending in setsar=1."""
    mode = ScalingMode.parse(mode)
    w, h = width, height
    wider = f"gte(iw/ih,{w}/{h})"

    if mode is ScalingMode.fill:
        parts = [f"scale={w}:{h}"]
    elif mode is ScalingMode.contain:
        parts = [
            f"scale='if({wider},{w},-1)':'if({wider},-1,{h})'",
            _pad(w, h),
        ]
    elif mode is ScalingMode.scale_down:
        parts = [
            f"scale='if({wider},min(iw,{w}),-1)':'if({wider},-1,min(ih,{h}))'",
            _pad(w, h),
        ]
    elif mode is ScalingMode.none:
        parts = [
            f"scale='if(gt(iw,{w}),{w},-1)':'if(gt(ih,{h}),{h},-1)'",
            _pad(w, h),
        ]
    else:
        parts = [
            f"scale='if({wider},-1,{w})':'if({wider},{h},-1)'",
            f"crop={w}:{h}",
        ]
    parts.append("setsar=1")
    return ",".join(parts)
