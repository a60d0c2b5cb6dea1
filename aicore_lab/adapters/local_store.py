"""
AI Core Lab - Local Object Store

Filesystem stand-in for an S3 bucket. Each bucket is a directory under the
object store root; object keys are relative paths inside it.
"""

from __future__ import annotations
from pathlib import Path
from typing import List
import logging
import shutil

from aicore_lab.adapters.base import (
    ObjectStore,
    ObjectStoreError,
    ObjectStoreFactory,
    normalize_key,
)
from aicore_lab.models import ObjectStoreSecret

logger = logging.getLogger(__name__)


class LocalObjectStore(ObjectStore):
    """Object store backed by a local directory per bucket."""

    def __init__(self, secret: ObjectStoreSecret, base_path: str = "./object_store"):
        super().__init__(secret)
        self.root = Path(base_path) / normalize_key(secret.bucket)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        normalized = normalize_key(key)
        return self.root / normalized if normalized else self.root

    def _key(self, path: Path) -> str:
        return path.relative_to(self.root).as_posix()

    def upload(self, local_path: str, key: str) -> List[str]:
        source = Path(local_path)
        target = self._path(key)
        if source.is_file():
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
            uploaded = [self._key(target)]
        elif source.is_dir():
            shutil.copytree(source, target, dirs_exist_ok=True)
            uploaded = [
                self._key(target / f.relative_to(source))
                for f in sorted(source.rglob("*"))
                if f.is_file()
            ]
        else:
            raise ObjectStoreError(f"Nothing to upload at {local_path}")

        logger.info(
            f"Uploaded {len(uploaded)} object(s) to {self.secret.bucket}/{normalize_key(key)}"
        )
        return uploaded

    def download(self, key: str, local_path: str) -> List[str]:
        source = self._path(key)
        target = Path(local_path)
        if source.is_file():
            if target.is_dir():
                target = target / source.name
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
            written = [str(target)]
        elif source.is_dir():
            shutil.copytree(source, target, dirs_exist_ok=True)
            written = [
                str(target / f.relative_to(source))
                for f in sorted(source.rglob("*"))
                if f.is_file()
            ]
        else:
            raise ObjectStoreError(
                f"No object found at {self.secret.bucket}/{normalize_key(key)}"
            )

        logger.debug(f"Downloaded {len(written)} object(s) from {key}")
        return written

    def exists(self, key: str) -> bool:
        return self._path(key).exists()

    def list(self, prefix: str = "") -> List[str]:
        base = self._path(prefix)
        if base.is_file():
            return [self._key(base)]
        if not base.is_dir():
            return []
        return [self._key(f) for f in sorted(base.rglob("*")) if f.is_file()]

    def delete(self, key: str) -> int:
        target = self._path(key)
        if target == self.root:
            raise ObjectStoreError("Refusing to delete the bucket root")
        if target.is_file():
            target.unlink()
            return 1
        if target.is_dir():
            count = len([f for f in target.rglob("*") if f.is_file()])
            shutil.rmtree(target)
            return count
        return 0


# Register store
ObjectStoreFactory.register("local", LocalObjectStore)
