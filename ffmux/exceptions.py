"""Error taxonomy shared by the compiler, the render worker and the API layer."""

from __future__ import annotations


class FfmuxError(Exception):
    """Base class for all ffmux errors."""


class ValidationError(FfmuxError):
    """Render request rejected before any external process starts."""


class ProbeDegraded(FfmuxError):
    """ffprobe failed; callers substitute fallback values and carry on."""


class GraphError(FfmuxError):
    """The filter program is inconsistent (missing style, no video, dangling label)."""


class EncodeError(FfmuxError):
    """ffmpeg exited abnormally."""

    def __init__(self, message: str, returncode: int | None = None):
        super().__init__(message)
        self.returncode = returncode


class RenderCancelled(FfmuxError):
    """The render was stopped by a cancel request or a timeout."""

    def __init__(self, message: str = "Render cancelled", kind: str = "cancelled"):
        super().__init__(message)
        self.kind = kind


class JobNotFound(FfmuxError):
    """Status or result query for an unknown or expired job id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class AssetInUse(FfmuxError):
    """A stored file is an input or the output of a job that is still processing."""

    def __init__(self, filename: str, job_id: str | None = None):
        detail = f" in job {job_id}" if job_id else ""
        super().__init__(f"File is currently being used{detail}: {filename}")
        self.filename = filename
        self.job_id = job_id
