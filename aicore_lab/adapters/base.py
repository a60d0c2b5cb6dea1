"""
AI Core Lab - Object Store Interface

Defines the interface artifact storage backends implement and the resolution
of ai://<secret>/<path> artifact URLs against registered secrets.
"""

from abc import ABC, abstractmethod
from pathlib import PurePosixPath
from typing import Dict, Iterable, List, Optional, Tuple

from aicore_lab.models import ObjectStoreSecret

AI_URL_SCHEME = "ai://"


class ObjectStoreError(Exception):
    """Exception raised for object store and artifact URL errors."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)


def normalize_key(key: str) -> str:
    """
    Normalize an object key to a relative POSIX path.

    Raises:
        ObjectStoreError: If the key escapes its root
    """
    parts = [p for p in PurePosixPath(key.replace("\\", "/")).parts if p not in ("/", ".")]
    if ".." in parts:
        raise ObjectStoreError(f"Object key must not contain '..': {key}")
    return "/".join(parts)


def resolve_artifact_url(
    url: str,
    secrets: Iterable[ObjectStoreSecret],
) -> Tuple[ObjectStoreSecret, str]:
    """
    Resolve an artifact URL to its secret and object key.

    ai://<secret>/<path> maps to <secret.path_prefix>/<path>.

    Args:
        url: Artifact URL
        secrets: Secrets registered in the resource group

    Returns:
        Tuple of (secret, object key)

    Raises:
        ObjectStoreError: If the URL is malformed or the secret is unknown
    """
    if not url.startswith(AI_URL_SCHEME):
        raise ObjectStoreError(f"Artifact URL must start with '{AI_URL_SCHEME}': {url}")

    remainder = url[len(AI_URL_SCHEME):]
    secret_name, _, path = remainder.partition("/")
    if not secret_name:
        raise ObjectStoreError(f"Artifact URL names no object store secret: {url}")

    by_name: Dict[str, ObjectStoreSecret] = {s.name: s for s in secrets}
    secret = by_name.get(secret_name)
    if secret is None:
        raise ObjectStoreError(
            f"Unknown object store secret '{secret_name}'",
            errors=[f"Available secrets: {sorted(by_name)}"],
        )

    key = normalize_key("/".join(p for p in (secret.path_prefix, path) if p))
    return secret, key


class ObjectStore(ABC):
    """
    Abstract base class for artifact storage backends.

    Keys are relative POSIX paths inside the secret's bucket. A key may name a
    single object or a "directory" of objects sharing the key as prefix.
    """

    def __init__(self, secret: ObjectStoreSecret):
        """
        Initialize store for a bucket.

        Args:
            secret: Secret describing bucket and credentials scope
        """
        self.secret = secret

    @abstractmethod
    def upload(self, local_path: str, key: str) -> List[str]:
        """
        Upload a file or directory tree.

        Args:
            local_path: Local file or directory
            key: Destination key

        Returns:
            Keys of the uploaded objects
        """
        pass

    @abstractmethod
    def download(self, key: str, local_path: str) -> List[str]:
        """
        Download an object or every object under a key.

        Args:
            key: Source key
            local_path: Destination file or directory

        Returns:
            Local paths written

        Raises:
            ObjectStoreError: If nothing exists under the key
        """
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check if an object or prefix exists."""
        pass

    @abstractmethod
    def list(self, prefix: str = "") -> List[str]:
        """List object keys under a prefix."""
        pass

    @abstractmethod
    def delete(self, key: str) -> int:
        """
        Delete an object or every object under a key.

        Returns:
            Number of objects deleted
        """
        pass


class ObjectStoreFactory:
    """
    Factory for creating object stores.

    Usage:
        store = ObjectStoreFactory.create("local", secret, base_path="./object_store")
    """

    _stores: Dict[str, type] = {}

    @classmethod
    def register(cls, store_type: str, store_class: type) -> None:
        """Register a store type."""
        cls._stores[store_type] = store_class

    @classmethod
    def create(cls, store_type: str, secret: ObjectStoreSecret, **kwargs) -> ObjectStore:
        """
        Create a store instance.

        Raises:
            ValueError: If store type is not registered
        """
        if store_type not in cls._stores:
            raise ValueError(
                f"Unknown object store type: {store_type}. "
                f"Available: {list(cls._stores.keys())}"
            )
        return cls._stores[store_type](secret, **kwargs)

    @classmethod
    def available_stores(cls) -> List[str]:
        """Get list of available store types."""
        return list(cls._stores.keys())
