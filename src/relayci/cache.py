# cache.py
from __future__ import annotations

import hashlib
import io
import json
import tarfile
import threading
import time
import zlib
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from .errors import CacheError
from .model import CacheEntry, CacheKey

# ---------------------------------------------------------------------
# Core idea
# ---------------------------------------------------------------------
# Step-level caching keyed by content fingerprints:
#   key = "<prefix>-<arch>-" + sha256(contents of declared lock files)
#
# Cache artifact:
#   <root>/<key>.tar.gz holding the saved blobs (relative path -> bytes)
#   plus a manifest member for explainability.
#
# A miss (or an unreadable artifact) is never an error: callers fall back
# to doing the work. Only `put` raises, with CacheError.
# ---------------------------------------------------------------------


DEFAULT_CACHE_DIR = ".relayci/cache"
MANIFEST_NAME = ".relayci_cache_manifest.json"


def _sha256_bytes(data: bytes) -> str:
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def _relpath(p: Path, root: Path) -> str:
    return str(p.resolve().relative_to(root.resolve())).replace("\\", "/")


def _iter_files_under(root: Path) -> Iterable[Path]:
    # deterministic traversal
    for p in sorted(root.rglob("*")):
        if p.is_file():
            yield p


def _hash_file_contents(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def fingerprint(key: CacheKey, *, root: str | Path = ".", arch: str = "") -> str:
    """
    Render a CacheKey into a concrete cache key.

    Missing lock files hash as "<missing>" so the key stays stable
    (and distinct from the key of an existing, empty file).
    """
    base = Path(root)
    h = hashlib.sha256()
    for rel in key.files:
        p = base / rel
        h.update(rel.encode("utf-8"))
        h.update(b"\0")
        if p.is_file():
            h.update(_hash_file_contents(p).encode("ascii"))
        else:
            h.update(b"<missing>")
        h.update(b"\0")

    parts = [key.prefix]
    if key.include_arch and arch:
        parts.append(arch)
    if key.files:
        parts.append(h.hexdigest())
    return "-".join(parts)


class CacheStore:
    """
    File-based cache store:
      root/
        <key>.tar.gz

    Writes go to a temp file and are swapped in atomically, so readers see
    either the old entry or the new one. Writes to one key are serialized.
    """

    def __init__(
        self,
        root: str | Path = DEFAULT_CACHE_DIR,
        *,
        log: Optional[Callable[[str], None]] = None,
    ):
        self.root = Path(root).resolve()
        self._log = log or (lambda _msg: None)
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            return lock

    def artifact_path(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise CacheError(f"invalid cache key: {key!r}", key=key)
        return self.root / f"{key}.tar.gz"

    # -----------------------------------------------------------------
    # Key/value API
    # -----------------------------------------------------------------

    def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry for `key`, or None on a miss or unreadable artifact."""
        try:
            art = self.artifact_path(key)
        except CacheError as e:
            self._log(str(e))
            return None
        if not art.exists():
            return None

        blobs: Dict[str, bytes] = {}
        created_at = art.stat().st_mtime if art.exists() else time.time()
        try:
            with tarfile.open(str(art), mode="r:gz") as tar:
                for member in tar.getmembers():
                    if not member.isfile():
                        continue
                    f = tar.extractfile(member)
                    if f is None:
                        continue
                    data = f.read()
                    if member.name == MANIFEST_NAME:
                        created_at = json.loads(data.decode("utf-8")).get("created_at", created_at)
                        continue
                    blobs[member.name] = data
        except (OSError, EOFError, zlib.error, tarfile.TarError, ValueError) as e:
            self._log(f"cache: could not read {art.name}: {e}")
            return None

        return CacheEntry(key=key, blobs=blobs, created_at=created_at)

    def put(self, key: str, blobs: Dict[str, bytes]) -> CacheEntry:
        """
        Store `blobs` under `key`. Same key, same content: no-op rewrite.
        Same key, different content: last writer wins.
        """
        art = self.artifact_path(key)
        entry = CacheEntry(key=key, blobs=dict(blobs))
        manifest = {
            "key": key,
            "created_at": entry.created_at,
            "files": {
                name: _sha256_bytes(data) for name, data in sorted(entry.blobs.items())
            },
        }

        with self._lock_for(key):
            tmp = art.with_suffix(".tmp")
            try:
                self.root.mkdir(parents=True, exist_ok=True)
                with tarfile.open(str(tmp), mode="w:gz") as tar:
                    for name, data in sorted(entry.blobs.items()):
                        _add_bytes(tar, name, data, entry.created_at)
                    payload = json.dumps(manifest, sort_keys=True, indent=2).encode("utf-8")
                    _add_bytes(tar, MANIFEST_NAME, payload, entry.created_at)
                tmp.replace(art)
            except (OSError, tarfile.TarError) as e:
                raise CacheError(f"could not write cache entry: {e}", key=key) from e
            finally:
                if tmp.exists():
                    tmp.unlink(missing_ok=True)

        return entry

    def keys(self) -> List[str]:
        if not self.root.exists():
            return []
        return sorted(p.name[: -len(".tar.gz")] for p in self.root.glob("*.tar.gz"))

    # -----------------------------------------------------------------
    # Filesystem helpers
    # -----------------------------------------------------------------

    @staticmethod
    def collect(paths: Iterable[str], root: str | Path = ".") -> Dict[str, bytes]:
        """
        Read declared cache paths (files or dirs, relative to `root`) into a
        blob-set. Missing paths are ignored.
        """
        base = Path(root).resolve()
        blobs: Dict[str, bytes] = {}
        for entry in paths:
            src = (base / Path(entry).expanduser()).resolve()
            if not src.exists():
                continue
            files = [src] if src.is_file() else list(_iter_files_under(src))
            for f in files:
                try:
                    rel = _relpath(f, base)
                except ValueError:
                    # outside the workspace: keep the absolute path
                    rel = str(f)
                blobs[rel] = f.read_bytes()
        return blobs

    def restore(self, key: str, root: str | Path = ".") -> Optional[CacheEntry]:
        """Write the entry for `key` back under `root`. Returns None on a miss."""
        entry = self.get(key)
        if entry is None:
            return None
        base = Path(root).resolve()
        try:
            for name, data in entry.blobs.items():
                dest = Path(name) if Path(name).is_absolute() else base / name
                dest.parent.mkdir(parents=True, exist_ok=True)
                dest.write_bytes(data)
        except OSError as e:
            self._log(f"cache: restore of {key} failed: {e}")
            return None
        return entry

    def prune(self, keep: int = 5) -> List[str]:
        """
        Keep only the newest N artifacts.
        Uses file mtime as "newest". Returns the removed keys.
        """
        if not self.root.exists():
            return []
        tars = sorted(self.root.glob("*.tar.gz"), key=lambda p: p.stat().st_mtime, reverse=True)
        removed = []
        for p in tars[keep:]:
            p.unlink(missing_ok=True)
            removed.append(p.name[: -len(".tar.gz")])
        return removed


def _add_bytes(tar: tarfile.TarFile, name: str, data: bytes, mtime: float) -> None:
    info = tarfile.TarInfo(name=name)
    info.size = len(data)
    info.mtime = int(mtime)
    tar.addfile(info, fileobj=io.BytesIO(data))
