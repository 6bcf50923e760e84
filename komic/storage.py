"""Media storage for covers and chapter pages.

Objects are addressed by slash-separated keys (the layout an S3/R2 bucket
would use) and stored as files under the configured media directory, which
the app serves at `storage.public_url`.
"""

from __future__ import annotations

import shutil
from io import BytesIO
from pathlib import Path, PurePosixPath
from typing import NamedTuple, Optional

from PIL import Image

from .config import KomicConfig
from .logging_config import get_logger

logger = get_logger(__name__)

ALLOWED_IMAGE_TYPES = {"image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"}

COVER_SIZE = (400, 600)
WEBP_QUALITY = {"cover": 80, "page": 85, "extra": 80}


class MediaPaths(NamedTuple):
    pending: str
    final: str


def generate_media_paths(
    kind: str,
    group_slug: str,
    series_url: str,
    chapter_number: Optional[str] = None,
) -> MediaPaths:
    """Keys for a series cover (a single object) or a chapter (a key prefix)."""
    if kind == "series":
        return MediaPaths(
            pending=f"komic/pending/series/{group_slug}-{series_url}.webp",
            final=f"komic/{group_slug}/{series_url}/{series_url}.webp",
        )
    if kind == "chapter":
        return MediaPaths(
            pending=f"komic/pending/chapters/{group_slug}-{series_url}-{chapter_number}",
            final=f"komic/{group_slug}/{series_url}/chapter-{chapter_number}",
        )
    raise ValueError(f"Unknown media kind: {kind}")


def page_filename(index: int) -> str:
    """Zero-padded page name, 1-based: 001.webp, 002.webp, ..."""
    return f"{index:03d}.webp"


def convert_to_webp(data: bytes, kind: str) -> bytes:
    """Re-encode an uploaded image as WebP.

    Covers are shrunk to fit inside 400x600 (never enlarged). Raises
    ValueError when the bytes are not a readable image.
    """
    quality = WEBP_QUALITY.get(kind, 80)
    try:
        with Image.open(BytesIO(data)) as im:
            im.load()
            if im.mode not in ("RGB", "RGBA"):
                im = im.convert("RGBA")
            if kind == "cover":
                im.thumbnail(COVER_SIZE)
            out = BytesIO()
            im.save(out, format="WEBP", quality=quality, method=4)
            return out.getvalue()
    except (OSError, Image.DecompressionBombError) as exc:
        raise ValueError(f"Unreadable image: {exc}") from exc


class MediaStore:
    """Filesystem-backed object store."""

    def __init__(self, root: Path, public_url: str = "/media"):
        self.root = Path(root)
        self.public_base = public_url.rstrip("/")

    @classmethod
    def from_config(cls, config: KomicConfig) -> "MediaStore":
        return cls(config.media_dir, config.storage.public_url)

    def path(self, key: str) -> Path:
        parts = PurePosixPath(key).parts
        if not parts or key.startswith("/") or ".." in parts:
            raise ValueError(f"Invalid media key: {key!r}")
        return self.root.joinpath(*parts)

    def public_url(self, key: str) -> str:
        return f"{self.public_base}/{key}"

    def key_from_url(self, url: str) -> Optional[str]:
        prefix = self.public_base + "/"
        if url.startswith(prefix):
            return url[len(prefix):]
        return None

    def put(self, key: str, data: bytes) -> str:
        """Store bytes under key and return the public URL."""
        path = self.path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return self.public_url(key)

    def get(self, key: str) -> bytes:
        return self.path(key).read_bytes()

    def exists(self, key: str) -> bool:
        return self.path(key).is_file()

    def move(self, src: str, dst: str) -> str:
        """Move an object to a new key. Raises FileNotFoundError if src is missing."""
        source = self.path(src)
        target = self.path(dst)
        if not source.is_file():
            raise FileNotFoundError(f"Media object not found: {src}")
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(source), str(target))
        logger.debug(f"Moved media {src} -> {dst}")
        return self.public_url(dst)

    def delete(self, key: str) -> None:
        path = self.path(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
