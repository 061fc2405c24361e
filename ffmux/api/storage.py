"""Upload and output directories: naming, listing, deletion, lookup."""

from __future__ import annotations

import re
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Mapping

from ffmux.api.models import FileInfo
from ffmux.exceptions import AssetInUse, ValidationError
from ffmux.utils.logging import debug, info


def safe_filename(name: str, fallback: str = "upload") -> str:
    """Sanitize a client filename: no path separators, no hidden files, safe chars only."""
    name = Path(name.replace("\\", "/")).name.replace("\x00", "")
    name = name.lstrip(".")
    name = re.sub(r"\.{2,}", ".", name)
    name = re.sub(r"[^\w\s\-.]", "_", name)
    name = re.sub(r"\s+", "_", name).strip("_").strip(".")
    if not name:
        name = fallback
    return name[:200]


def _stat_time(st, attr: str) -> datetime:
    return datetime.fromtimestamp(getattr(st, attr), tz=timezone.utc)


class AssetStore:
    """Owns the uploads and outputs directories."""

    def __init__(self, upload_dir: str | Path, output_dir: str | Path):
        self.upload_dir = Path(upload_dir)
        self.output_dir = Path(output_dir)
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def directory(self, kind: str) -> Path:
        if kind == "uploads":
            return self.upload_dir
        if kind == "outputs":
            return self.output_dir
        raise ValueError(f"unknown storage area: {kind}")

    def path_in(self, kind: str, filename: str) -> Path:
        """Absolute path of ``filename`` inside an area; rejects traversal."""
        base = self.directory(kind).resolve()
        path = (base / filename).resolve()
        if not filename or path == base or not path.is_relative_to(base):
            raise ValidationError(f"Invalid filename: {filename}")
        return path

    # ── uploads ──

    def unique_upload_path(self, original_name: str) -> Path:
        """Keep the original stem, lower-case the extension, add _1, _2, … on collision."""
        clean = Path(safe_filename(original_name))
        stem, suffix = clean.stem, clean.suffix.lower()
        dest = self.upload_dir / f"{stem}{suffix}"
        i = 1
        while dest.exists():
            dest = self.upload_dir / f"{stem}_{i}{suffix}"
            i += 1
        return dest

    def save_upload(self, original_name: str, stream: BinaryIO) -> Path:
        dest = self.unique_upload_path(original_name)
        with open(dest, "wb") as f:
            shutil.copyfileobj(stream, f)
        info(f"[storage] Stored upload {dest.name}")
        return dest

    def resolve(self, filename: str) -> Path:
        """Look up an uploaded asset, raising ValidationError when it does not exist."""
        try:
            path = self.path_in("uploads", filename)
        except ValidationError:
            raise ValidationError(f"File not found: {filename}") from None
        if not path.is_file():
            raise ValidationError(f"File not found: {filename}")
        return path

    # ── listing / deletion ──

    def list_files(
        self, kind: str, search: str | None = None, extension: str | None = None,
    ) -> list[FileInfo]:
        """Files in an area, newest first, filtered by substring and extension."""
        base = self.directory(kind)
        ext = None
        if extension:
            ext = extension.lower()
            if not ext.startswith("."):
                ext = "." + ext
        needle = search.lower() if search else None

        files = []
        for p in base.iterdir():
            if not p.is_file() or p.name.startswith("."):
                continue
            if needle and needle not in p.name.lower():
                continue
            if ext and p.suffix.lower() != ext:
                continue
            st = p.stat()
            created_attr = "st_birthtime" if hasattr(st, "st_birthtime") else "st_ctime"
            files.append(FileInfo(
                filename=p.name,
                size=st.st_size,
                created=_stat_time(st, created_attr),
                modified=_stat_time(st, "st_mtime"),
                extension=p.suffix.lower(),
                path=str(p),
            ))
        files.sort(key=lambda f: f.created, reverse=True)
        return files

    def delete(self, kind: str, filename: str, in_use: Mapping[Path, str] | None = None) -> Path:
        """Delete a stored file.

        ``in_use`` maps paths held by processing jobs to their job ids.

        Raises:
            ValidationError: invalid name.
            FileNotFoundError: no such file.
            AssetInUse: the file belongs to a processing job.
        """
        path = self.path_in(kind, filename)
        if not path.is_file():
            raise FileNotFoundError(filename)
        if in_use and path in in_use:
            raise AssetInUse(filename, in_use[path])
        path.unlink()
        debug(f"[storage] Deleted {kind}/{filename}")
        return path
