import hashlib
import os
import tempfile
from pathlib import Path
from typing import Protocol, Union


class AssetStore(Protocol):
    def put(self, data: bytes) -> str:
        ...

    def get(self, ref: str) -> bytes:
        ...

    def exists(self, ref: str) -> bool:
        ...


def _hash_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FileAssetStore:
    """Content-addressed blob store: refs are sha256 digests, files are sharded by prefix."""

    def __init__(self, root: Union[str, os.PathLike] = "assets"):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path(self, ref: str) -> Path:
        if len(ref) < 8 or not all(c in "0123456789abcdef" for c in ref):
            raise ValueError(f"Invalid asset ref: {ref!r}")
        return self.root / ref[:2] / ref[2:4] / ref

    def put(self, data: bytes) -> str:
        ref = _hash_bytes(data)
        target = self.path(ref)
        if target.exists():
            return ref
        target.parent.mkdir(parents=True, exist_ok=True)
        # Write then rename so readers never see a partial blob.
        fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=".tmp-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, target)
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        return ref

    def get(self, ref: str) -> bytes:
        target = self.path(ref)
        if not target.exists():
            raise FileNotFoundError(f"asset not found: {ref}")
        return target.read_bytes()

    def exists(self, ref: str) -> bool:
        try:
            return self.path(ref).is_file()
        except ValueError:
            return False
