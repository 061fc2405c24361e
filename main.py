"""ffmux: FastAPI render server.

Start with:
    python main.py
    python main.py --host 0.0.0.0 --port 3000
    python main.py --reload
"""

from __future__ import annotations

import argparse
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

load_dotenv()

VERSION = "1.0.0"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Assign a unique request_id to every incoming request for log correlation."""

    async def dispatch(self, request: Request, call_next):
        from ffmux.utils.logging import set_request_id
        rid = request.headers.get("x-request-id", "")
        rid = set_request_id(rid)
        response = await call_next(request)
        response.headers["x-request-id"] = rid
        return response


@asynccontextmanager
async def lifespan(application: FastAPI):
    # Startup
    from ffmux.api.storage import AssetStore
    from ffmux.api.tasks import JobRegistry, RenderQueue
    from ffmux.utils.config import load_config
    from ffmux.utils.deps_check import check_all, print_dep_status
    from ffmux.utils.logging import Verbosity, info, setup_logging, success, warn
    from ffmux.utils.media_executor import configure_media_executor
    from ffmux.video.probe import FFprobeProber

    setup_logging(Verbosity.NORMAL)
    info(f"ffmux v{VERSION} starting...")

    cfg = load_config()
    configure_media_executor(
        ffmpeg_threads=cfg.rendering.ffmpeg_threads,
        nice=cfg.rendering.nice,
    )

    if cfg.fonts.download_on_startup:
        import httpx
        from ffmux.utils.fonts import download_fonts
        try:
            await download_fonts(cfg.storage.fonts_dir)
        except httpx.HTTPError as e:
            warn(f"Font download failed, text overlays may not render: {e}")

    print_dep_status(check_all(cfg.storage.fonts_dir))

    registry = JobRegistry(
        max_concurrent=cfg.rendering.max_concurrent,
        max_finished=cfg.rendering.max_finished_jobs,
    )
    store = AssetStore(cfg.storage.upload_dir, cfg.storage.output_dir)
    application.state.config = cfg
    application.state.registry = registry
    application.state.store = store
    application.state.prober = FFprobeProber(timeout=cfg.probe.timeout)
    application.state.render_queue = RenderQueue(registry, cfg, Path(cfg.storage.output_dir))

    success(f"Server ready: uploads={store.upload_dir} outputs={store.output_dir} "
            f"max_concurrent={registry.max_concurrent}")

    yield  # app runs here

    # Shutdown
    application.state.render_queue.shutdown(cancel=True)
    info("ffmux stopped")


app = FastAPI(
    title="ffmux",
    description="Render video compositions from declarative timelines with ffmpeg",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)

# ── API Routes ────────────────────────────────────────────────────────────────

from ffmux.api.routes import router as render_router  # noqa: E402
app.include_router(render_router)


# ── CLI Entry Point ───────────────────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(description="ffmux render server")
    parser.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=3000, help="Port (default: 3000)")
    parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes")
    args = parser.parse_args()

    import uvicorn
    # jobs live in process memory, so a single worker serves all status queries
    uvicorn.run(
        "main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=1,
        log_level="info",
    )


if __name__ == "__main__":
    main()
