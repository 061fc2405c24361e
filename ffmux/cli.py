"""Main CLI application with typer subcommands."""

from __future__ import annotations

import asyncio
import json
import shlex
import threading
from pathlib import Path
from typing import Annotated, Optional

import pydantic
import typer
from dotenv import load_dotenv
from rich.prompt import Confirm

from ffmux.exceptions import EncodeError, FfmuxError, RenderCancelled, ValidationError
from ffmux.utils.config import DEFAULT_CONFIG_YAML, AppConfig, load_config, merge_cli_overrides
from ffmux.utils.deps_check import check_all, print_dep_table
from ffmux.utils.logging import (
    Verbosity, console, error, info, make_progress, setup_logging, success, warn,
)

load_dotenv()

app = typer.Typer(
    name="ffmux",
    help="Render video compositions from declarative timelines with ffmpeg.",
    rich_markup_mode="rich",
    no_args_is_help=True,
)


# ── Helper functions ──────────────────────────────────────────────────────────

def _load_spec(spec_file: Path):
    from ffmux.api.models import RenderRequest
    try:
        data = json.loads(spec_file.read_text(encoding="utf-8"))
        return RenderRequest.model_validate(data).to_spec()
    except (OSError, json.JSONDecodeError) as e:
        error(f"Cannot read {spec_file}: {e}")
        raise typer.Exit(1)
    except (pydantic.ValidationError, ValidationError) as e:
        error(f"Invalid render spec: {e}")
        raise typer.Exit(1)


def _asset_resolver(assets: Path):
    base = assets.resolve()

    def resolve(filename: str) -> Path:
        p = (base / filename).resolve()
        if not p.is_relative_to(base) or not p.is_file():
            raise ValidationError(f"File not found: {filename}")
        return p

    return resolve


def _config(config: Optional[Path], output: Optional[Path]) -> AppConfig:
    cfg = load_config(config)
    if output is not None:
        cfg = merge_cli_overrides(cfg, {"storage.output_dir": str(output)})
    return cfg


# ── SERVE ─────────────────────────────────────────────────────────────────────

@app.command()
def serve(
    host: Annotated[str, typer.Option(help="Bind host")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Port")] = 3000,
    reload: Annotated[bool, typer.Option("--reload")] = False,
):
    """Run the HTTP render server."""
    import uvicorn
    uvicorn.run("main:app", host=host, port=port, reload=reload, workers=1, log_level="info")


# ── CHECK / FONTS / INIT ──────────────────────────────────────────────────────

@app.command()
def check(
    config: Annotated[Optional[Path], typer.Option("--config")] = None,
):
    """Check that ffmpeg, ffprobe and the text fonts are available."""
    setup_logging(Verbosity.NORMAL)
    cfg = load_config(config)
    deps = check_all(cfg.storage.fonts_dir)
    print_dep_table(deps)
    if not all(d.available for d in deps if d.name in ("ffmpeg", "ffprobe")):
        raise typer.Exit(1)


@app.command()
def fonts(
    config: Annotated[Optional[Path], typer.Option("--config")] = None,
):
    """Download the Roboto fonts used by text overlays."""
    import httpx
    from ffmux.utils.fonts import download_fonts

    setup_logging(Verbosity.NORMAL)
    cfg = load_config(config)
    try:
        fetched = asyncio.run(download_fonts(cfg.storage.fonts_dir))
    except httpx.HTTPError:
        raise typer.Exit(1)
    success(f"Fonts ready in {cfg.storage.fonts_dir} ({len(fetched)} downloaded)")


@app.command(name="init")
def init_config():
    """Generate a default config.yaml in the current directory."""
    setup_logging(Verbosity.NORMAL)
    p = Path("config.yaml")
    if p.exists():
        if not Confirm.ask("config.yaml exists. Overwrite?", default=False):
            raise typer.Exit(0)
    p.write_text(DEFAULT_CONFIG_YAML)
    success(f"Created {p}")


# ── COMPILE / RENDER ──────────────────────────────────────────────────────────

@app.command(name="compile")
def compile_cmd(
    spec_file: Annotated[Path, typer.Argument(help="Render request JSON")],
    assets: Annotated[Path, typer.Option("--assets", "-a", help="Directory holding the assets")] = Path("."),
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Output directory")] = None,
    config: Annotated[Optional[Path], typer.Option("--config")] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v")] = False,
):
    """Print the ffmpeg command for a render request without running it."""
    from ffmux.video.render import compile_render

    setup_logging(Verbosity.VERBOSE if verbose else Verbosity.SILENT)
    cfg = _config(config, output)
    spec = _load_spec(spec_file)
    try:
        plan = compile_render(spec, _asset_resolver(assets), Path(cfg.storage.output_dir), cfg)
    except FfmuxError as e:
        error(str(e))
        raise typer.Exit(1)
    if verbose:
        console.print_json(data=plan.timeline.to_dict())
    console.print(shlex.join(plan.command), soft_wrap=True, markup=False, highlight=False)


@app.command()
def render(
    spec_file: Annotated[Path, typer.Argument(help="Render request JSON")],
    assets: Annotated[Path, typer.Option("--assets", "-a", help="Directory holding the assets")] = Path("."),
    output: Annotated[Optional[Path], typer.Option("--output", "-o", help="Output directory")] = None,
    config: Annotated[Optional[Path], typer.Option("--config")] = None,
    timeout: Annotated[float, typer.Option(help="Stop after N seconds (0 = none)")] = 0,
    verbose: Annotated[bool, typer.Option("--verbose", "-v")] = False,
):
    """Render a request locally with a progress bar."""
    from ffmux.utils.media_executor import configure_media_executor
    from ffmux.video.render import compile_render, execute_render

    setup_logging(Verbosity.VERBOSE if verbose else Verbosity.NORMAL)
    cfg = _config(config, output)
    configure_media_executor(ffmpeg_threads=cfg.rendering.ffmpeg_threads, nice=cfg.rendering.nice)
    spec = _load_spec(spec_file)
    try:
        plan = compile_render(spec, _asset_resolver(assets), Path(cfg.storage.output_dir), cfg)
    except FfmuxError as e:
        error(str(e))
        raise typer.Exit(1)

    info(f"Rendering {len(plan.timeline.items)} items, {plan.total_duration:.1f}s")
    cancel = threading.Event()
    with make_progress() as progress:
        task = progress.add_task("Rendering", total=100)
        try:
            result = execute_render(
                plan,
                on_progress=lambda pct: progress.update(task, completed=pct),
                cancel_event=cancel,
                timeout=timeout or cfg.rendering.render_timeout_seconds or None,
            )
        except KeyboardInterrupt:
            cancel.set()
            warn("Interrupted")
            raise typer.Exit(130)
        except RenderCancelled as e:
            warn(str(e))
            raise typer.Exit(1)
        except EncodeError as e:
            error(f"Render failed:\n{e}")
            raise typer.Exit(1)
    success(f"Rendered: {result}")


# ── ENTRY POINT ───────────────────────────────────────────────────────────────

def app_entry():
    app()


if __name__ == "__main__":
    app_entry()
