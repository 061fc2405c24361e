"""Render job registry and background workers (thread-safe).

The registry is an explicit service object owned by the application
(``app.state.registry``).  Workers run in a ThreadPoolExecutor; each job
holds one render slot while its ffmpeg process runs, so at most
``max_concurrent`` encodes are active and the rest wait in submission order.
"""

from __future__ import annotations

import asyncio
import threading
import time
import traceback
import uuid
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterator

from ffmux.exceptions import EncodeError, GraphError, JobNotFound, RenderCancelled
from ffmux.utils.config import AppConfig
from ffmux.utils.logging import debug, error, info, set_job_id, success, warn
from ffmux.video.render import execute_render, plan_render
from ffmux.video.timeline import RenderSpec, ResolvedTimeline


class JobState(str, Enum):
    processing = "processing"
    finished = "finished"
    failed = "failed"


@dataclass
class Job:
    id: str
    state: JobState = JobState.processing
    progress: int = 0
    started_at: float = field(default_factory=time.time)
    finished_at: float | None = None
    output_path: Path | None = None
    error: str | None = None
    error_kind: str | None = None
    inputs: tuple[Path, ...] = ()
    target_path: Path | None = None
    admitted: bool = False
    settled: bool = False  # a terminal signal has been recorded
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False)

    def status(self) -> dict[str, Any]:
        end = self.finished_at or time.time()
        return {
            "status": self.state.value,
            "progress": self.progress,
            "error": self.error,
            "errorKind": self.error_kind,
            "duration": int((end - self.started_at) * 1000),
        }


class JobRegistry:
    """Per-job state machines: processing → finished | failed.

    Terminal states are sticky; progress after a terminal signal is ignored.
    A progress report of 100 optimistically marks the job finished while the
    output path is still pending.
    """

    def __init__(self, max_concurrent: int = 1, max_finished: int = 200):
        self.max_concurrent = max(1, max_concurrent)
        self.max_finished = max_finished
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()
        self._slots = threading.BoundedSemaphore(self.max_concurrent)
        self._running = 0
        self._subscribers: list[asyncio.Queue] = []
        self._loop: asyncio.AbstractEventLoop | None = None

    # ── queries ──

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def find(self, job_id: str) -> Job | None:
        with self._lock:
            return self._jobs.get(job_id)

    def get(self, job_id: str) -> Job:
        job = self.find(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def jobs(self) -> list[Job]:
        with self._lock:
            return list(self._jobs.values())

    def paths_in_use(self) -> dict[Path, str]:
        """Input and output paths of processing jobs → job id."""
        used: dict[Path, str] = {}
        with self._lock:
            for job in self._jobs.values():
                if job.settled:
                    continue
                for p in (*job.inputs, job.target_path):
                    if p is not None:
                        used[Path(p).resolve()] = job.id
        return used

    def queue_status(self) -> dict[str, int]:
        with self._lock:
            processing = sum(1 for j in self._jobs.values() if not j.settled)
            return {
                "max_concurrent": self.max_concurrent,
                "running": self._running,
                "waiting": processing - self._running,
                "jobs": len(self._jobs),
            }

    # ── transitions ──

    def create(self, inputs: tuple[Path, ...] = ()) -> Job:
        job = Job(id=str(uuid.uuid4()), inputs=tuple(inputs))
        with self._lock:
            self._jobs[job.id] = job
            self._prune()
        self._emit({"type": "job_created", "job_id": job.id})
        return job

    def update_progress(self, job_id: str, percent: int) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.settled or percent <= job.progress:
                return
            job.progress = min(100, percent)
            if job.progress >= 100:
                job.state = JobState.finished
            state = job.state.value
        self._emit({"type": "job_progress", "job_id": job_id,
                    "status": state, "progress": percent})

    def set_target(self, job_id: str, path: Path) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                job.target_path = path

    def finish(self, job_id: str, output_path: Path) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.settled:
                return
            job.state = JobState.finished
            job.output_path = output_path
            job.settled = True
            job.finished_at = time.time()
        self._emit({"type": "job_finished", "job_id": job_id, "output": output_path.name})

    def fail(self, job_id: str, message: str, kind: str = "encode") -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.settled:
                return
            job.state = JobState.failed
            job.error = message
            job.error_kind = kind
            job.settled = True
            job.finished_at = time.time()
        self._emit({"type": "job_failed", "job_id": job_id, "error": message, "kind": kind})

    def cancel(self, job_id: str) -> Job:
        """Request cancellation.  A job still waiting for a slot fails at once."""
        job = self.get(job_id)
        job.cancel_event.set()
        if not job.admitted:
            self.fail(job_id, "Render cancelled", kind="cancelled")
        info(f"[jobs] Cancel requested for {job_id}")
        return job

    def cancel_all(self) -> int:
        pending = [j for j in self.jobs() if not j.settled]
        for job in pending:
            self.cancel(job.id)
        return len(pending)

    def clear(self) -> None:
        with self._lock:
            self._jobs.clear()

    @contextmanager
    def slot(self, job: Job) -> Iterator[None]:
        """Hold one of the ``max_concurrent`` render slots."""
        with self._slots:
            with self._lock:
                job.admitted = True
                self._running += 1
            try:
                if job.cancel_event.is_set():
                    raise RenderCancelled()
                yield
            finally:
                with self._lock:
                    self._running -= 1

    def _prune(self) -> None:
        settled = [j for j in self._jobs.values() if j.settled]
        if len(settled) <= self.max_finished:
            return
        settled.sort(key=lambda j: j.finished_at or 0)
        for j in settled[:-self.max_finished] if self.max_finished else settled:
            del self._jobs[j.id]

    # ── SSE (thread-safe) ──

    def subscribe(self) -> asyncio.Queue:
        self._loop = asyncio.get_running_loop()
        q: asyncio.Queue = asyncio.Queue(maxsize=100)
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        if q in self._subscribers:
            self._subscribers.remove(q)

    def _emit(self, event: dict) -> None:
        """Safe to call from worker threads."""
        event["timestamp"] = datetime.now(timezone.utc).isoformat()
        if self._loop is None or not self._subscribers:
            return
        for q in list(self._subscribers):
            try:
                self._loop.call_soon_threadsafe(_offer, q, event)
            except RuntimeError:
                # loop closed
                self.unsubscribe(q)


def _offer(q: asyncio.Queue, event: dict) -> None:
    if not q.full():
        q.put_nowait(event)


# ── Workers ──────────────────────────────────────────────────────────────────

class RenderQueue:
    """Runs accepted render jobs on a worker pool sized to the slot count."""

    def __init__(self, registry: JobRegistry, config: AppConfig, output_dir: Path):
        self.registry = registry
        self.config = config
        self.output_dir = Path(output_dir)
        self._executor = ThreadPoolExecutor(
            max_workers=registry.max_concurrent, thread_name_prefix="render",
        )

    def submit(self, spec: RenderSpec, timeline: ResolvedTimeline) -> Job:
        inputs = tuple(r.path for r in timeline.items if r.path is not None)
        job = self.registry.create(inputs=inputs)
        info(f"[jobs] Accepted render {job.id}: {spec.width}x{spec.height}, "
             f"{len(timeline.items)} items, {timeline.total_duration:.1f}s")
        self._executor.submit(self.run, job, spec, timeline)
        return job

    def run(self, job: Job, spec: RenderSpec, timeline: ResolvedTimeline) -> None:
        set_job_id(job.id[:8])
        registry = self.registry
        timeout = self.config.rendering.render_timeout_seconds or None
        try:
            if job.settled:
                return
            with registry.slot(job):
                plan = plan_render(spec, timeline, self.output_dir, self.config)
                registry.set_target(job.id, plan.output_path)
                output = execute_render(
                    plan,
                    on_progress=lambda pct: registry.update_progress(job.id, pct),
                    cancel_event=job.cancel_event,
                    timeout=timeout,
                    description=f"render {job.id[:8]}",
                )
            registry.finish(job.id, output)
            success(f"[jobs] Render {job.id} finished: {output.name}")
        except RenderCancelled as e:
            warn(f"[jobs] Render {job.id} stopped: {e.kind}")
            registry.fail(job.id, str(e), kind=e.kind)
        except GraphError as e:
            error(f"[jobs] Render {job.id} has an invalid graph: {e}")
            registry.fail(job.id, str(e), kind="graph")
        except EncodeError as e:
            registry.fail(job.id, str(e), kind="encode")
        except Exception as e:
            error(f"[jobs] Render {job.id} crashed: {e}")
            debug(traceback.format_exc())
            registry.fail(job.id, str(e), kind="internal")
        finally:
            set_job_id("")

    def shutdown(self, cancel: bool = True) -> None:
        if cancel:
            n = self.registry.cancel_all()
            if n:
                info(f"[jobs] Cancelled {n} unfinished render(s)")
        self._executor.shutdown(wait=True, cancel_futures=False)
