"""Text style presets, named positions and drawtext value escaping.

Presets are frozen; per-request customization (font size) goes through
``resolve_style`` which returns a modified copy.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from ffmux.exceptions import GraphError


@dataclass(frozen=True)
class TextStyle:
    font_color: str = "white"
    font_size: int = 72
    font_file: str = "Roboto-Regular.ttf"  # relative to the fonts directory
    border_color: str | None = None
    border_width: int = 0
    box_color: str | None = None
    box_border_width: int = 0


TEXT_STYLES: Mapping[str, TextStyle] = MappingProxyType({
    # plain white text
    "basic": TextStyle(font_file="Roboto-Regular.ttf"),
    "outlined": TextStyle(border_color="black", border_width=3, font_file="Roboto-Bold.ttf"),
    "dark": TextStyle(font_color="black", font_file="Roboto-Medium.ttf"),
    # TikTok-style captions on a translucent box
    "tiktok": TextStyle(
        border_color="black", border_width=4,
        box_color="black@0.5", box_border_width=10,
        font_file="Roboto-Black.ttf",
    ),
    "subtitle": TextStyle(font_size=48, border_color="black", border_width=2, font_file="Roboto-Medium.ttf"),
})

DEFAULT_STYLE = "basic"

_MARGIN = "50"
_CENTER_X = "(w-text_w)/2"
_CENTER_Y = "(h-text_h)/2"
_RIGHT = "w-text_w-50"
_BOTTOM = "h-text_h-50"

TEXT_POSITIONS: Mapping[str, tuple[str, str]] = MappingProxyType({
    "top-left": (_MARGIN, _MARGIN),
    "top-center": (_CENTER_X, _MARGIN),
    "top-right": (_RIGHT, _MARGIN),
    "middle-left": (_MARGIN, _CENTER_Y),
    "middle-center": (_CENTER_X, _CENTER_Y),
    "middle-right": (_RIGHT, _CENTER_Y),
    "bottom-left": (_MARGIN, _BOTTOM),
    "bottom-center": (_CENTER_X, _BOTTOM),
    "bottom-right": (_RIGHT, _BOTTOM),
})

DEFAULT_POSITION = "middle-center"


def resolve_style(name: str | None, font_size: int | None = None) -> TextStyle:
    """Look up a preset by name, applying a font size override to a copy."""
    style = TEXT_STYLES.get(name or DEFAULT_STYLE)
    if style is None:
        raise GraphError(f"Invalid text style: {name}")
    if font_size:
        style = replace(style, font_size=font_size)
    return style


def resolve_position(position: str | Mapping[str, str] | None) -> tuple[str, str]:
    """Named positions map to x/y expressions; explicit {x, y} pass through.

    Anything unrecognized lands in the middle of the frame.
    """
    if isinstance(position, str) and position in TEXT_POSITIONS:
        return TEXT_POSITIONS[position]
    if isinstance(position, Mapping) and ("x" in position or "y" in position):
        default_x, default_y = TEXT_POSITIONS[DEFAULT_POSITION]
        return str(position.get("x", default_x)), str(position.get("y", default_y))
    return TEXT_POSITIONS[DEFAULT_POSITION]


def font_path(style: TextStyle, fonts_dir: Path) -> Path:
    return fonts_dir / style.font_file


# ── Escaping ──────────────────────────────────────────────────────────────────
#
# A filter option value inside -filter_complex is unescaped twice: once by the
# graph parser (quotes) and once by the option parser (backslashes).  drawtext
# text is unescaped a third time by drawtext's own expansion.

def quote_value(value: str) -> str:
    """Quote an option value (expression, path) for use inside a filter graph."""
    escaped = value.replace("\\", "\\\\").replace("'", "\\'").replace(":", "\\:")
    return "'" + escaped.replace("'", "'\\''") + "'"


def escape_text(text: str) -> str:
    """Escape literal text for drawtext's text= option."""
    return quote_value(text.replace("\\", "\\\\").replace("%", "\\%"))
