"""Local object store for uploaded and generated media."""
import asyncio
import logging
import shutil
from pathlib import Path
from typing import Optional
from urllib.parse import unquote, urlparse

logger = logging.getLogger(__name__)


class MediaNotFoundError(Exception):
    """Raised when a media reference cannot be resolved to a stored object."""


class LocalMediaStore:
    """
    Object store backed by a directory on local disk.

    Objects are addressed by slash-separated keys (``clips/<user>/<week>/x.mp4``)
    and published as ``<base_url>/<key>``.
    """

    def __init__(self, root: Path, base_url: str):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def url_for(self, key: str) -> str:
        return f"{self.base_url}/{key}"

    def key_from_url(self, url: Optional[str]) -> Optional[str]:
        """
        Extract the object key from a published URL.

        Bare keys are returned unchanged. Returns None for empty input or a
        URL outside this store.
        """
        if not url:
            return None

        if "://" not in url:
            return url.lstrip("/") or None

        parsed = urlparse(url)
        base_path = urlparse(self.base_url).path.rstrip("/")
        path = unquote(parsed.path)
        if base_path:
            if not path.startswith(base_path + "/"):
                logger.warning(f"URL is not served by this media store: {url}")
                return None
            path = path[len(base_path):]
        return path.lstrip("/") or None

    def resolve_path(self, key: str) -> Path:
        """Map a key to its file, refusing keys that escape the store root."""
        root = self.root.resolve()
        path = (root / key).resolve()
        if root not in path.parents:
            raise MediaNotFoundError(f"Invalid media key: {key}")
        return path

    def exists(self, url_or_key: Optional[str]) -> bool:
        key = self.key_from_url(url_or_key)
        if not key:
            return False
        try:
            return self.resolve_path(key).is_file()
        except MediaNotFoundError:
            return False

    async def put_file(self, local_path: Path, key: str, content_type: Optional[str] = None) -> str:
        """Copy a local file into the store and return its public URL."""
        dest = self.resolve_path(key)
        dest.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(shutil.copyfile, local_path, dest)
        logger.debug(f"Stored {key} ({content_type or 'unknown type'})")
        return self.url_for(key)

    async def put_bytes(self, data: bytes, key: str, content_type: Optional[str] = None) -> str:
        """Write raw bytes into the store and return the public URL."""
        dest = self.resolve_path(key)
        dest.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(dest.write_bytes, data)
        logger.debug(f"Stored {key} ({content_type or 'unknown type'}, {len(data)} bytes)")
        return self.url_for(key)

    async def fetch(self, url_or_key: Optional[str], dest: Path) -> Path:
        """
        Copy a stored object to a local path.

        Raises:
            MediaNotFoundError: If the reference is empty, foreign, or missing
        """
        key = self.key_from_url(url_or_key)
        if not key:
            raise MediaNotFoundError(f"Unresolvable media reference: {url_or_key!r}")

        source = self.resolve_path(key)
        if not source.is_file():
            raise MediaNotFoundError(f"Media not found: {key}")

        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(shutil.copyfile, source, dest)
        return dest

    async def delete(self, url_or_key: Optional[str]) -> bool:
        """Delete a stored object. Missing objects are not an error."""
        key = self.key_from_url(url_or_key)
        if not key:
            return False

        try:
            path = self.resolve_path(key)
            path.unlink()
        except (FileNotFoundError, MediaNotFoundError):
            return False
        except OSError as e:
            logger.error(f"Failed to delete {key}: {e}")
            return False

        logger.info(f"Deleted {key} from media store")
        return True
