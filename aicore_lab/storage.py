"""
AI Core Lab - Registry Storage

Persists the AI Core entities the emulator manages as JSON files.
"""

from __future__ import annotations
from pathlib import Path
from typing import Callable, List, Optional, Type, TypeVar
import json
import logging
import os
import tempfile

import filelock
from pydantic import BaseModel

from aicore_lab.config import get_settings
from aicore_lab.models import (
    Artifact,
    ArtifactKind,
    Configuration,
    Deployment,
    Executable,
    Execution,
    ObjectStoreSecret,
    Scenario,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

LOCK_FILE_NAME = "registry.lock"


def _safe_name(value: str) -> str:
    return "".join(c if c.isalnum() or c in "-_." else "_" for c in value)


class StorageManager:
    """
    Manages storage of registry entities.

    Directory structure:
    <base_path>/
        secrets/            - Object store secrets (<resource group>/<name>.json)
        executables/        - Registered executables (<resource group>/<id>.json)
        artifacts/          - Registered artifacts
        configurations/     - Configurations
        executions/         - Executions
        deployments/        - Deployments

    Files are replaced atomically, and ``lock`` (a file lock, reentrant within
    a thread) serializes read-modify-write cycles between the API, background
    runs and other processes sharing the directory.
    """

    KINDS = [
        "secrets",
        "executables",
        "artifacts",
        "configurations",
        "executions",
        "deployments",
    ]

    def __init__(self, base_path: str = "./storage"):
        """Initialize storage manager with base path."""
        self.base_path = Path(base_path)
        for kind in self.KINDS:
            (self.base_path / kind).mkdir(parents=True, exist_ok=True)
        self.lock = filelock.FileLock(self.base_path / LOCK_FILE_NAME)
        logger.info(f"Storage initialized at: {self.base_path.absolute()}")

    def _entity_path(
        self,
        kind: str,
        entity_id: str,
        resource_group: Optional[str] = None,
    ) -> Path:
        """Get path for a specific entity, inside its resource group's folder if scoped."""
        directory = self.base_path / kind
        if resource_group is not None:
            group = _safe_name(resource_group)
            if group in ("", ".", ".."):
                raise ValueError(f"Invalid resource group: '{resource_group}'")
            directory = directory / group
        return directory / f"{_safe_name(entity_id)}.json"

    def _save(
        self,
        kind: str,
        entity_id: str,
        entity: BaseModel,
        resource_group: Optional[str] = None,
    ) -> None:
        path = self._entity_path(kind, entity_id, resource_group)
        path.parent.mkdir(parents=True, exist_ok=True)
        with self.lock:
            fd, tmp_name = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(entity.model_dump(mode="json"), f, indent=2, default=str)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        logger.debug(f"Saved {kind}/{entity_id}")

    def _load(
        self,
        kind: str,
        entity_id: str,
        model: Type[T],
        resource_group: Optional[str] = None,
    ) -> Optional[T]:
        path = self._entity_path(kind, entity_id, resource_group)
        if not path.exists():
            return None
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return model(**data)

    def _update(
        self,
        kind: str,
        entity_id: str,
        model: Type[T],
        update: Callable[[T], None],
    ) -> Optional[T]:
        """Load, change and save one entity while holding the lock."""
        with self.lock:
            entity = self._load(kind, entity_id, model)
            if entity is None:
                return None
            update(entity)
            self._save(kind, entity_id, entity)
            return entity

    def _list(
        self,
        kind: str,
        model: Type[T],
        resource_group: Optional[str] = None,
    ) -> List[T]:
        entities = []
        for path in sorted((self.base_path / kind).rglob("*.json")):
            with open(path, "r", encoding="utf-8") as f:
                entity = model(**json.load(f))
            if resource_group is None or getattr(entity, "resource_group", None) == resource_group:
                entities.append(entity)
        return sorted(entities, key=lambda e: getattr(e, "created_at"))

    def _delete(self, kind: str, entity_id: str, resource_group: Optional[str] = None) -> bool:
        path = self._entity_path(kind, entity_id, resource_group)
        with self.lock:
            if path.exists():
                path.unlink()
                logger.info(f"Deleted {kind}/{entity_id}")
                return True
        return False

    # =========================================================================
    # OBJECT STORE SECRETS
    # =========================================================================

    def save_secret(self, secret: ObjectStoreSecret) -> None:
        """Save secret metadata (never credentials)."""
        self._save("secrets", secret.name, secret, secret.resource_group)

    def load_secret(self, name: str, resource_group: str) -> Optional[ObjectStoreSecret]:
        return self._load("secrets", name, ObjectStoreSecret, resource_group)

    def list_secrets(self, resource_group: Optional[str] = None) -> List[ObjectStoreSecret]:
        return self._list("secrets", ObjectStoreSecret, resource_group)

    def delete_secret(self, name: str, resource_group: str) -> bool:
        return self._delete("secrets", name, resource_group)

    # =========================================================================
    # EXECUTABLES AND SCENARIOS
    # =========================================================================

    def save_executable(self, executable: Executable) -> None:
        self._save("executables", executable.id, executable, executable.resource_group)

    def load_executable(self, executable_id: str, resource_group: str) -> Optional[Executable]:
        return self._load("executables", executable_id, Executable, resource_group)

    def list_executables(
        self,
        resource_group: Optional[str] = None,
        scenario_id: Optional[str] = None,
    ) -> List[Executable]:
        executables = self._list("executables", Executable, resource_group)
        if scenario_id is not None:
            executables = [e for e in executables if e.scenario_id == scenario_id]
        return executables

    def list_scenarios(self, resource_group: Optional[str] = None) -> List[Scenario]:
        """Derive scenarios from registered executables."""
        scenarios = {}
        for executable in self.list_executables(resource_group):
            scenario = scenarios.setdefault(
                executable.scenario_id,
                Scenario(
                    id=executable.scenario_id,
                    name=executable.scenario_name,
                    description=executable.scenario_description,
                ),
            )
            scenario.executable_ids.append(executable.id)
        return list(scenarios.values())

    # =========================================================================
    # ARTIFACTS
    # =========================================================================

    def save_artifact(self, artifact: Artifact) -> None:
        self._save("artifacts", artifact.id, artifact)

    def load_artifact(self, artifact_id: str) -> Optional[Artifact]:
        return self._load("artifacts", artifact_id, Artifact)

    def list_artifacts(
        self,
        resource_group: Optional[str] = None,
        scenario_id: Optional[str] = None,
        kind: Optional[ArtifactKind] = None,
        execution_id: Optional[str] = None,
    ) -> List[Artifact]:
        artifacts = self._list("artifacts", Artifact, resource_group)
        if scenario_id is not None:
            artifacts = [a for a in artifacts if a.scenario_id == scenario_id]
        if kind is not None:
            artifacts = [a for a in artifacts if a.kind == kind]
        if execution_id is not None:
            artifacts = [a for a in artifacts if a.execution_id == execution_id]
        return artifacts

    # =========================================================================
    # CONFIGURATIONS
    # =========================================================================

    def save_configuration(self, configuration: Configuration) -> None:
        self._save("configurations", configuration.id, configuration)

    def load_configuration(self, configuration_id: str) -> Optional[Configuration]:
        return self._load("configurations", configuration_id, Configuration)

    def list_configurations(
        self,
        resource_group: Optional[str] = None,
        scenario_id: Optional[str] = None,
    ) -> List[Configuration]:
        configurations = self._list("configurations", Configuration, resource_group)
        if scenario_id is not None:
            configurations = [c for c in configurations if c.scenario_id == scenario_id]
        return configurations

    # =========================================================================
    # EXECUTIONS
    # =========================================================================

    def save_execution(self, execution: Execution) -> None:
        self._save("executions", execution.id, execution)

    def load_execution(self, execution_id: str) -> Optional[Execution]:
        return self._load("executions", execution_id, Execution)

    def update_execution(
        self,
        execution_id: str,
        update: Callable[[Execution], None],
    ) -> Optional[Execution]:
        """Apply ``update`` to the stored execution and save it atomically."""
        return self._update("executions", execution_id, Execution, update)

    def list_executions(
        self,
        resource_group: Optional[str] = None,
        scenario_id: Optional[str] = None,
    ) -> List[Execution]:
        executions = self._list("executions", Execution, resource_group)
        if scenario_id is not None:
            executions = [e for e in executions if e.scenario_id == scenario_id]
        return executions

    def delete_execution(self, execution_id: str) -> bool:
        return self._delete("executions", execution_id)

    # =========================================================================
    # DEPLOYMENTS
    # =========================================================================

    def save_deployment(self, deployment: Deployment) -> None:
        self._save("deployments", deployment.id, deployment)

    def load_deployment(self, deployment_id: str) -> Optional[Deployment]:
        return self._load("deployments", deployment_id, Deployment)

    def update_deployment(
        self,
        deployment_id: str,
        update: Callable[[Deployment], None],
    ) -> Optional[Deployment]:
        return self._update("deployments", deployment_id, Deployment, update)

    def list_deployments(
        self,
        resource_group: Optional[str] = None,
        scenario_id: Optional[str] = None,
    ) -> List[Deployment]:
        deployments = self._list("deployments", Deployment, resource_group)
        if scenario_id is not None:
            deployments = [d for d in deployments if d.scenario_id == scenario_id]
        return deployments

    def delete_deployment(self, deployment_id: str) -> bool:
        return self._delete("deployments", deployment_id)


_storage: Optional[StorageManager] = None


def get_storage() -> StorageManager:
    """Get the storage manager instance."""
    global _storage
    if _storage is None:
        _storage = StorageManager(get_settings().STORAGE_PATH)
    return _storage
