"""
Media collection and download.

Rendering and downloading are separate phases. While the renderer walks the
tree it registers every image, video and file icon in an AssetSet. Once
every document is rendered, AssetFetcher downloads the whole set in one
concurrent batch.

Files are named after the block that references them, not after the
original upload: media/{block_id}.{ext}. Notion file URLs are pre-signed
S3 links whose path ends in the original filename, so the extension is
taken from there. Block ids are unique, which makes the path a stable
dedup key. Two Downloadables with the same path are the same asset, even
if the URLs differ (signatures change on every API call).
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from pathlib import Path, PurePosixPath, PureWindowsPath
from urllib.parse import urlparse

import requests

from .errors import PathError, TransportError, WriteError

FILES_DIR = "media"

log = logging.getLogger("notion-export")


@dataclass(frozen=True, eq=False)
class Downloadable:
    url: str
    path: str

    def __post_init__(self):
        path = self.path
        if isinstance(path, PurePosixPath):
            path = path.as_posix()
        if not isinstance(path, str) or not path:
            raise PathError(f"Empty or non-string download path for {self.url}")
        try:
            path.encode("utf-8")
        except UnicodeEncodeError as e:
            raise PathError(f"Download path {path!r} cannot be encoded as UTF-8") from e
        if any(ord(c) < 32 or ord(c) == 127 for c in path):
            raise PathError(f"Download path {path!r} contains control characters")
        posix = PurePosixPath(path)
        if posix.is_absolute() or PureWindowsPath(path).drive:
            raise PathError(f"Download path {path!r} must be relative")
        if ".." in posix.parts:
            raise PathError(f"Download path {path!r} escapes the output directory")
        if path.endswith("/") or posix.as_posix() == ".":
            raise PathError(f"Download path {path!r} does not name a file")
        object.__setattr__(self, "path", posix.as_posix())

    # Identity is the destination path only
    def __eq__(self, other):
        if not isinstance(other, Downloadable):
            return NotImplemented
        return self.path == other.path

    def __hash__(self):
        return hash(self.path)

    @classmethod
    def for_block(cls, url, block_id):
        """media/{block_id}.{ext}, extension taken from the URL's last path segment."""
        parsed = urlparse(url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise PathError(f"Failed to parse file URL {url!r} for block {block_id}")
        # Suffix of the raw, still percent-encoded segment
        ext = PurePosixPath(parsed.path).suffix
        return cls(url, f"{FILES_DIR}/{block_id}{ext}")

    @property
    def src_path(self):
        """The path as written into rendered documents at the output root."""
        return self.path


class AssetSet:
    """
    Path-keyed set of Downloadables, safe to fill from many rendering threads.

    The lock covers only the lookup-and-store step; nothing that can block
    (logging, I/O) happens while it is held.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[str, Downloadable] = {}

    def insert(self, downloadable):
        """Add `downloadable` unless its path is already taken. True iff this call added it."""
        with self._lock:
            kept = self._entries.get(downloadable.path)
            if kept is None:
                self._entries[downloadable.path] = downloadable
                return True

        if kept.url != downloadable.url:
            log.warning(
                "Two assets map to %s; keeping %s and dropping %s",
                downloadable.path, kept.url, downloadable.url,
            )
        return False

    def is_empty(self):
        with self._lock:
            return not self._entries

    def __len__(self):
        with self._lock:
            return len(self._entries)

    def drain(self):
        """Remove and return every entry, in no particular order."""
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        return entries


class AssetFetcher:
    def __init__(self, client, max_workers=8):
        self.client = client
        self.max_workers = max_workers

    def fetch_all(self, assets, output_root):
        """
        Download every entry of `assets` to output_root/{path}. Returns the number of files.

        Fails on the first error. Files already written stay on disk; there
        is no rollback. An empty set returns 0 without touching disk or network.
        """
        if assets.is_empty():
            return 0

        output_root = Path(output_root)
        try:
            (output_root / FILES_DIR).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WriteError(f"Could not create {output_root / FILES_DIR}: {e}") from e

        entries = assets.drain()
        log.info("Downloading %d files...", len(entries))
        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="download")
        try:
            futures = [pool.submit(self._fetch_one, d, output_root) for d in entries]
            for future in as_completed(futures):
                future.result()
        except BaseException:
            pool.shutdown(wait=False, cancel_futures=True)
            raise

        pool.shutdown()
        return len(entries)

    def _fetch_one(self, downloadable, output_root):
        dest = output_root / downloadable.path
        resp = self.client.download(downloadable.url)
        with resp:
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
                with open(dest, "wb") as f:
                    for chunk in resp.iter_content(65536):
                        f.write(chunk)
            except requests.RequestException as e:
                raise TransportError(f"Download of {downloadable.url} broke off: {e}") from e
            except OSError as e:
                raise WriteError(f"Could not write {dest}: {e}") from e
        log.info("  media %s", downloadable.path)
