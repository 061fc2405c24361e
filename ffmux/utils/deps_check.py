"""Dependency self-check with helpful installation hints."""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from rich.table import Table

from ffmux.utils.fonts import missing_fonts
from ffmux.utils.logging import console, error, info, warn


@dataclass
class DepStatus:
    name: str
    available: bool
    version: str = ""
    hint: str = ""


def _tool_version(tool: str) -> DepStatus:
    if not shutil.which(tool):
        return DepStatus(
            tool, False,
            hint="Install: sudo apt-get install ffmpeg  (or https://ffmpeg.org/download.html)",
        )
    try:
        r = subprocess.run([tool, "-version"], capture_output=True, text=True, timeout=5)
    except (OSError, subprocess.TimeoutExpired):
        return DepStatus(tool, False, hint=f"{tool} found but failed to run")
    ver = r.stdout.split("\n")[0] if r.stdout else "unknown"
    return DepStatus(tool, True, version=ver)


def check_ffmpeg() -> DepStatus:
    return _tool_version("ffmpeg")


def check_ffprobe() -> DepStatus:
    return _tool_version("ffprobe")


def check_fonts(fonts_dir: str | Path) -> DepStatus:
    missing = missing_fonts(Path(fonts_dir))
    if not missing:
        return DepStatus("fonts", True, version=str(fonts_dir))
    return DepStatus(
        "fonts", False,
        hint=f"missing {', '.join(missing)}; run: ffmux fonts",
    )


def check_all(fonts_dir: str | Path = "fonts") -> list[DepStatus]:
    return [check_ffmpeg(), check_ffprobe(), check_fonts(fonts_dir)]


def print_dep_status(deps: list[DepStatus], strict: bool = False) -> bool:
    all_ok = True
    for d in deps:
        if d.available:
            info(f"[green]✓[/green] {d.name}: {d.version or 'OK'}")
        elif strict:
            error(f"{d.name}: NOT FOUND ({d.hint})")
            all_ok = False
        else:
            warn(f"{d.name}: not found ({d.hint})")
    return all_ok


def print_dep_table(deps: list[DepStatus]) -> None:
    table = Table(title="ffmux dependencies")
    table.add_column("Dependency")
    table.add_column("Status")
    table.add_column("Details", overflow="fold")
    for d in deps:
        status = "[green]ok[/green]" if d.available else "[red]missing[/red]"
        table.add_row(d.name, status, d.version if d.available else d.hint)
    console.print(table)
