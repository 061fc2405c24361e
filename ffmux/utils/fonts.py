"""Roboto font provisioning for the drawtext styles."""

from __future__ import annotations

import asyncio
from pathlib import Path

import httpx

from ffmux.utils.logging import debug, error, info

FONTS = {
    "Roboto-Regular.ttf": "https://fonts.gstatic.com/s/roboto/v30/KFOmCnqEu92Fr1Me5Q.ttf",
    "Roboto-Bold.ttf": "https://fonts.gstatic.com/s/roboto/v30/KFOlCnqEu92Fr1MmWUlvAw.ttf",
    "Roboto-Medium.ttf": "https://fonts.gstatic.com/s/roboto/v30/KFOlCnqEu92Fr1MmEU9vAw.ttf",
    "Roboto-Black.ttf": "https://fonts.gstatic.com/s/roboto/v30/KFOlCnqEu92Fr1MmYUtvAw.ttf",
}


def missing_fonts(fonts_dir: Path) -> list[str]:
    return [name for name in FONTS if not (Path(fonts_dir) / name).exists()]


async def _download(client: httpx.AsyncClient, name: str, url: str, dest: Path) -> Path:
    r = await client.get(url, follow_redirects=True)
    r.raise_for_status()
    tmp = dest.with_suffix(".part")
    tmp.write_bytes(r.content)
    tmp.replace(dest)
    info(f"[fonts] Downloaded {name}")
    return dest


async def download_fonts(fonts_dir: str | Path, timeout: float = 60) -> list[Path]:
    """Download every missing font; fonts already present are skipped.

    Raises httpx.HTTPError when any download fails.
    """
    fonts_dir = Path(fonts_dir)
    fonts_dir.mkdir(parents=True, exist_ok=True)
    todo = missing_fonts(fonts_dir)
    for name in FONTS:
        if name not in todo:
            debug(f"[fonts] {name} already exists, skipping")
    if not todo:
        return []
    async with httpx.AsyncClient(timeout=timeout) as client:
        try:
            return list(await asyncio.gather(*(
                _download(client, name, FONTS[name], fonts_dir / name) for name in todo
            )))
        except httpx.HTTPError as e:
            error(f"[fonts] Font download failed: {e}")
            raise
