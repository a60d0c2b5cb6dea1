"""
AI Core Lab - Adapters Package

Object store interface and implementations used to move artifacts between
the registry and execution workspaces.
"""

from aicore_lab.adapters.base import (
    ObjectStore,
    ObjectStoreError,
    ObjectStoreFactory,
    resolve_artifact_url,
)
from aicore_lab.adapters.local_store import LocalObjectStore

__all__ = [
    "ObjectStore",
    "ObjectStoreError",
    "ObjectStoreFactory",
    "LocalObjectStore",
    "resolve_artifact_url",
]
