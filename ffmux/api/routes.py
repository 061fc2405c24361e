"""FastAPI routes: uploads, outputs, render jobs, job events."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pydantic
from fastapi import APIRouter, Body, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import FileResponse, StreamingResponse

from ffmux.api.models import (
    DeleteRequest,
    DeleteResponse,
    FileListResponse,
    HealthResponse,
    JobStatusResponse,
    RenderRequest,
    RenderResponse,
    UploadResponse,
)
from ffmux.api.storage import AssetStore
from ffmux.api.tasks import JobRegistry, RenderQueue
from ffmux.exceptions import AssetInUse, JobNotFound, ValidationError
from ffmux.utils.logging import warn
from ffmux.utils.media_executor import get_media_queue_status
from ffmux.video.render import resolve_render

router = APIRouter(tags=["render"])


def _store(request: Request) -> AssetStore:
    return request.app.state.store


def _registry(request: Request) -> JobRegistry:
    return request.app.state.registry


def _queue(request: Request) -> RenderQueue:
    return request.app.state.render_queue


def _validation_message(e: pydantic.ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg", ""))
    return "; ".join(parts)


# ── Health ────────────────────────────────────────────────────────────────────

@router.get("/health", response_model=HealthResponse)
async def health(request: Request):
    from ffmux.utils.deps_check import check_ffmpeg, check_ffprobe
    return HealthResponse(
        status="ok",
        ffmpeg=check_ffmpeg().available, ffprobe=check_ffprobe().available,
        queue={**_registry(request).queue_status(), "media": get_media_queue_status()},
    )


# ── SSE ───────────────────────────────────────────────────────────────────────

@router.get("/events")
async def sse_events(request: Request):
    registry = _registry(request)
    q = registry.subscribe()

    async def gen():
        try:
            while True:
                try:
                    ev = await asyncio.wait_for(q.get(), timeout=30)
                    yield f"data: {json.dumps(ev)}\n\n"
                except asyncio.TimeoutError:
                    yield f"data: {json.dumps({'type': 'heartbeat'})}\n\n"
        finally:
            registry.unsubscribe(q)

    return StreamingResponse(gen(), media_type="text/event-stream",
                             headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"})


# ── Uploads / outputs ────────────────────────────────────────────────────────

@router.post("/upload", response_model=UploadResponse)
def upload_file(request: Request, file: UploadFile = File(...)):
    if not file.filename:
        raise HTTPException(400, "No file uploaded")
    dest = _store(request).save_upload(file.filename, file.file)
    return UploadResponse(filename=dest.name, size=dest.stat().st_size,
                          mimetype=file.content_type)


def _list(request: Request, kind: str, search: str | None, extension: str | None):
    files = _store(request).list_files(kind, search=search, extension=extension)
    return FileListResponse(total=len(files), files=files)


def _delete(request: Request, kind: str, body: DeleteRequest) -> DeleteResponse:
    if not body.filename:
        raise HTTPException(400, "Filename is required in request body")
    try:
        _store(request).delete(kind, body.filename, in_use=_registry(request).paths_in_use())
    except ValidationError as e:
        raise HTTPException(400, str(e))
    except FileNotFoundError:
        raise HTTPException(404, "File not found")
    except AssetInUse as e:
        raise HTTPException(409, str(e))
    return DeleteResponse(filename=body.filename)


@router.get("/uploads", response_model=FileListResponse)
def list_uploads(request: Request, search: str | None = Query(None),
                 extension: str | None = Query(None)):
    return _list(request, "uploads", search, extension)


@router.delete("/uploads", response_model=DeleteResponse)
def delete_upload(request: Request, body: DeleteRequest = Body(...)):
    return _delete(request, "uploads", body)


@router.get("/outputs", response_model=FileListResponse)
def list_outputs(request: Request, search: str | None = Query(None),
                 extension: str | None = Query(None)):
    return _list(request, "outputs", search, extension)


@router.delete("/outputs", response_model=DeleteResponse)
def delete_output(request: Request, body: DeleteRequest = Body(...)):
    return _delete(request, "outputs", body)


@router.get("/outputs/{filename}")
def download_output(request: Request, filename: str):
    try:
        path = _store(request).path_in("outputs", filename)
    except ValidationError:
        raise HTTPException(400, "Invalid filename")
    if not path.is_file():
        raise HTTPException(404, "File not found")
    return FileResponse(path, filename=path.name)


# ── Render jobs ──────────────────────────────────────────────────────────────

@router.post("/render", response_model=RenderResponse)
def start_render(request: Request, body: dict[str, Any] = Body(...)):
    """Validate and resolve the timeline, then queue the encode.

    Validation problems are answered with 400 and never create a job.
    """
    try:
        req = RenderRequest.model_validate(body)
        spec = req.to_spec()
        timeline = resolve_render(
            spec, _store(request).resolve,
            config=request.app.state.config, prober=request.app.state.prober,
        )
    except pydantic.ValidationError as e:
        raise HTTPException(400, _validation_message(e))
    except ValidationError as e:
        warn(f"[render] Rejected request: {e}")
        raise HTTPException(400, str(e))

    job = _queue(request).submit(spec, timeline)
    return RenderResponse(jobId=job.id, status=job.state.value)


@router.get("/status/{job_id}", response_model=JobStatusResponse)
def job_status(request: Request, job_id: str):
    try:
        job = _registry(request).get(job_id)
    except JobNotFound:
        raise HTTPException(404, "Job not found")
    return JobStatusResponse(**job.status())


@router.get("/download/{job_id}")
def download_result(request: Request, job_id: str):
    job = _registry(request).find(job_id)
    if job is None or job.output_path is None or not job.output_path.is_file():
        raise HTTPException(404, "Output not found")
    return FileResponse(job.output_path, filename=job.output_path.name)


@router.post("/cancel/{job_id}", response_model=JobStatusResponse)
def cancel_job(request: Request, job_id: str):
    try:
        job = _registry(request).cancel(job_id)
    except JobNotFound:
        raise HTTPException(404, "Job not found")
    return JobStatusResponse(**job.status())
