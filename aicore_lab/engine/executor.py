"""
AI Core Lab - Local Executor

Runs execution plans on this machine: workflow executions through step
plugins, deployments by staging and loading the served model. Artifacts move
through the object store exactly as they would between S3 and the cluster.
"""

from __future__ import annotations
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple
import logging

from aicore_lab.adapters.base import (
    ObjectStore,
    ObjectStoreError,
    ObjectStoreFactory,
    normalize_key,
    resolve_artifact_url,
)
from aicore_lab.config import Settings, get_settings
from aicore_lab.models import (
    Artifact,
    ArtifactKind,
    Deployment,
    Executable,
    Execution,
    ExecutionPlan,
    ExecutionStatus,
    ResolvedArtifact,
    TargetStatus,
)
from aicore_lab.plugins.base import PluginContext, PluginRegistry
from aicore_lab.serving import ModelHolder
from aicore_lab.storage import StorageManager
from aicore_lab.training import MODEL_FILENAME

logger = logging.getLogger(__name__)


class ExecutionError(Exception):
    """Exception raised during an execution or deployment."""

    def __init__(
        self,
        message: str,
        execution_id: str,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.execution_id = execution_id
        self.original_error = original_error
        super().__init__(self.message)


class _Runner:
    """Shared object store and workspace handling."""

    def __init__(
        self,
        storage: StorageManager,
        object_store_path: str = "./object_store",
        workspace_path: str = "./workspaces",
        store_type: str = "local",
    ):
        self.storage = storage
        self.object_store_path = object_store_path
        self.workspace_path = Path(workspace_path)
        self.store_type = store_type
        self.logger = logging.getLogger(__name__)

    def _store_for(self, url: str, resource_group: str) -> Tuple[ObjectStore, str]:
        """Resolve an artifact URL to a store and object key."""
        secrets = self.storage.list_secrets(resource_group)
        secret, key = resolve_artifact_url(url, secrets)
        store = ObjectStoreFactory.create(
            self.store_type,
            secret,
            base_path=self.object_store_path,
        )
        return store, key

    def _workspace(self, entity_id: str) -> Path:
        workspace = self.workspace_path / entity_id
        workspace.mkdir(parents=True, exist_ok=True)
        return workspace

    def _local_path(self, workspace: Path, artifact: ResolvedArtifact) -> Path:
        """Map a container path into the workspace."""
        if artifact.path:
            return workspace / normalize_key(artifact.path)
        return workspace / "artifacts" / normalize_key(artifact.name)


class LocalExecutor(_Runner):
    """
    Executes workflow plans.

    Status flow: PENDING -> RUNNING -> COMPLETED, or DEAD on any failure.
    A stop requested before the step starts or while it runs ends the
    execution as STOPPED without registering outputs.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._progress_callback: Optional[Callable[[str, int, str], None]] = None

    def set_progress_callback(self, callback: Callable[[str, int, str], None]) -> None:
        """
        Set callback for progress updates.

        Args:
            callback: Function(execution_id, percent, message)
        """
        self._progress_callback = callback

    def _report_progress(self, execution: Execution, percent: int, message: str) -> None:
        execution.progress_percent = percent
        if self._progress_callback:
            self._progress_callback(execution.id, percent, message)

    def _stop_requested(self, execution_id: str) -> bool:
        stored = self.storage.load_execution(execution_id)
        return stored is not None and stored.target_status == TargetStatus.STOPPED

    def _save(self, execution: Execution) -> None:
        """Save without losing a stop requested while running."""
        with self.storage.lock:
            if self._stop_requested(execution.id):
                execution.target_status = TargetStatus.STOPPED
                if execution.status in (ExecutionStatus.PENDING, ExecutionStatus.RUNNING):
                    execution.status = ExecutionStatus.STOPPING
            self.storage.save_execution(execution)

    def execute(
        self,
        execution: Execution,
        plan: ExecutionPlan,
        executable: Executable,
    ) -> Execution:
        """
        Execute a workflow plan.

        Args:
            execution: Execution record (saved on every status change)
            plan: Resolved execution plan
            executable: Executable the plan was made from

        Returns:
            Execution in its terminal status
        """
        if self._stop_requested(execution.id):
            execution.status = ExecutionStatus.STOPPED
            execution.target_status = TargetStatus.STOPPED
            execution.status_message = "Stopped before start"
            execution.completion_time = datetime.utcnow()
            self._save(execution)
            return execution

        execution.status = ExecutionStatus.PENDING
        self._report_progress(execution, 0, "Pending")
        self._save(execution)

        try:
            plugin = PluginRegistry.get_for_command(plan.container.command, plan.container.args)
            if plugin is None:
                raise ExecutionError(
                    f"No step plugin for container command of '{executable.id}'. "
                    f"Available plugins: {PluginRegistry.available()}",
                    execution_id=execution.id,
                )

            execution.status = ExecutionStatus.RUNNING
            execution.start_time = datetime.utcnow()
            self._save(execution)
            self.logger.info(f"Execution {execution.id} running with plugin '{plugin.PLUGIN_NAME}'")

            workspace = self._workspace(execution.id)

            # Stage inputs
            inputs: Dict[str, str] = {}
            for artifact in plan.input_artifacts:
                store, key = self._store_for(artifact.url, execution.resource_group)
                local = self._local_path(workspace, artifact)
                store.download(key, str(local))
                inputs[artifact.name] = str(local)
            self._report_progress(execution, 25, "Inputs staged")

            outputs: Dict[str, str] = {}
            for artifact in plan.output_artifacts:
                local = self._local_path(workspace, artifact)
                local.mkdir(parents=True, exist_ok=True)
                outputs[artifact.name] = str(local)

            context = PluginContext(
                execution_id=execution.id,
                workspace=str(workspace),
                parameters=dict(plan.parameters),
                env=dict(plan.container.env),
                inputs=inputs,
                outputs=outputs,
            )

            validation_errors = plugin.validate(context)
            if validation_errors:
                raise ExecutionError(
                    f"Validation failed: {'; '.join(validation_errors)}",
                    execution_id=execution.id,
                )

            self._report_progress(execution, 40, f"Running {plugin.PLUGIN_NAME}")
            result = plugin.execute(context)
            if not result.success:
                raise ExecutionError(result.message, execution_id=execution.id)
            execution.metrics = result.metrics

            if self._stop_requested(execution.id):
                execution.status = ExecutionStatus.STOPPED
                execution.target_status = TargetStatus.STOPPED
                execution.status_message = "Stopped on request, outputs discarded"
                return execution

            # Collect outputs
            for artifact in plan.output_artifacts:
                store, key = self._store_for(artifact.url, execution.resource_group)
                store.upload(outputs[artifact.name], key)
                registered = Artifact(
                    name=artifact.name,
                    kind=artifact.kind or ArtifactKind.MODEL,
                    url=artifact.url,
                    scenario_id=executable.scenario_id,
                    execution_id=execution.id,
                    description=f"Output '{artifact.name}' of execution {execution.id}",
                    resource_group=execution.resource_group,
                )
                self.storage.save_artifact(registered)
                execution.output_artifacts.append(registered)
            self._report_progress(execution, 90, "Outputs registered")

            execution.status = ExecutionStatus.COMPLETED
            execution.status_message = result.message or "Execution completed"
            self.logger.info(f"Execution {execution.id} completed")

        except (ExecutionError, ObjectStoreError) as e:
            self.logger.error(f"Execution {execution.id} failed: {e.message}")
            execution.status = ExecutionStatus.DEAD
            execution.status_message = e.message

        except Exception as e:
            self.logger.exception(f"Execution {execution.id} failed: {str(e)}")
            execution.status = ExecutionStatus.DEAD
            execution.status_message = f"Execution error: {str(e)}"

        finally:
            execution.completion_time = datetime.utcnow()
            self._report_progress(execution, 100, execution.status.value)
            self._save(execution)

        return execution


class LocalDeployer(_Runner):
    """
    Brings serving plans up on the emulator.

    The model artifact is staged into the workspace and loaded once to prove
    it unpickles; the emulator then serves it under the deployment URL.
    """

    def __init__(self, *args, base_url: str = "http://localhost:8000", **kwargs):
        super().__init__(*args, **kwargs)
        self.base_url = base_url.rstrip("/")

    def _model_artifact(self, plan: ExecutionPlan) -> ResolvedArtifact:
        for artifact in plan.input_artifacts:
            if artifact.kind == ArtifactKind.MODEL:
                return artifact
        if plan.input_artifacts:
            return plan.input_artifacts[0]
        raise ExecutionError("Serving plan has no model artifact", execution_id=plan.execution_id)

    def _stop_requested(self, deployment_id: str) -> bool:
        stored = self.storage.load_deployment(deployment_id)
        return stored is not None and stored.target_status == TargetStatus.STOPPED

    def _save(self, deployment: Deployment, create: bool = True) -> None:
        """
        Save the deploy result.

        A stop that arrived meanwhile wins over the result, and a record
        deleted after such a stop is not brought back unless ``create``.
        """
        with self.storage.lock:
            stored = self.storage.load_deployment(deployment.id)
            if stored is None and not create:
                self.logger.info(f"Deployment {deployment.id} was deleted while deploying")
                return
            if stored is not None and stored.target_status == TargetStatus.STOPPED:
                deployment.target_status = TargetStatus.STOPPED
                deployment.status = ExecutionStatus.STOPPED
                deployment.status_message = stored.status_message
                deployment.completion_time = stored.completion_time or datetime.utcnow()
            self.storage.save_deployment(deployment)

    def _find_model_file(self, staged: Path) -> Path:
        if staged.is_file():
            return staged
        preferred = staged / MODEL_FILENAME
        if preferred.is_file():
            return preferred
        candidates = sorted(staged.rglob("*.pkl"))
        if not candidates:
            raise ObjectStoreError(f"No pickled model found in artifact staged at {staged}")
        return candidates[0]

    def deploy(
        self,
        deployment: Deployment,
        plan: ExecutionPlan,
        executable: Executable,
    ) -> Deployment:
        """
        Deploy a serving plan.

        Returns:
            Deployment with status RUNNING, DEAD on failure, or STOPPED
            when a stop was requested before the deploy finished
        """
        if self._stop_requested(deployment.id):
            self._save(deployment)
            return deployment

        deployment.status = ExecutionStatus.PENDING
        self._save(deployment)

        try:
            artifact = self._model_artifact(plan)
            store, key = self._store_for(artifact.url, deployment.resource_group)
            local = self._local_path(self._workspace(deployment.id), artifact)
            store.download(key, str(local))
            model_file = self._find_model_file(local)

            if not ModelHolder().load(str(model_file)):
                raise ExecutionError(
                    f"Model artifact '{artifact.artifact_id}' could not be loaded",
                    execution_id=deployment.id,
                )

            deployment.model_path = str(model_file)
            deployment.deployment_url = f"{self.base_url}/v2/inference/deployments/{deployment.id}"
            deployment.status = ExecutionStatus.RUNNING
            deployment.status_message = f"Serving {executable.id} from {model_file.name}"
            deployment.start_time = datetime.utcnow()
            self.logger.info(f"Deployment {deployment.id} running at {deployment.deployment_url}")

        except (ExecutionError, ObjectStoreError) as e:
            self.logger.error(f"Deployment {deployment.id} failed: {e.message}")
            deployment.status = ExecutionStatus.DEAD
            deployment.status_message = e.message
            deployment.completion_time = datetime.utcnow()

        except Exception as e:
            self.logger.exception(f"Deployment {deployment.id} failed: {str(e)}")
            deployment.status = ExecutionStatus.DEAD
            deployment.status_message = f"Deployment error: {str(e)}"
            deployment.completion_time = datetime.utcnow()

        self._save(deployment, create=False)
        return deployment

    def stop(self, deployment: Deployment) -> Deployment:
        """Stop a deployment, including one still being deployed."""
        def mark_stopped(target: Deployment) -> None:
            target.target_status = TargetStatus.STOPPED
            target.status = ExecutionStatus.STOPPED
            target.status_message = "Stopped on request"
            target.completion_time = datetime.utcnow()

        with self.storage.lock:
            stored = self.storage.update_deployment(deployment.id, mark_stopped)
            if stored is None:
                mark_stopped(deployment)
                self.storage.save_deployment(deployment)
                stored = deployment
        self.logger.info(f"Deployment {deployment.id} stopped")
        return stored


def create_executor(storage: StorageManager, settings: Optional[Settings] = None) -> LocalExecutor:
    """Create a workflow executor from settings."""
    settings = settings or get_settings()
    return LocalExecutor(
        storage,
        object_store_path=settings.OBJECT_STORE_PATH,
        workspace_path=settings.WORKSPACE_PATH,
        store_type=settings.OBJECT_STORE_TYPE,
    )


def create_deployer(storage: StorageManager, settings: Optional[Settings] = None) -> LocalDeployer:
    """Create a deployer from settings."""
    settings = settings or get_settings()
    return LocalDeployer(
        storage,
        object_store_path=settings.OBJECT_STORE_PATH,
        workspace_path=settings.WORKSPACE_PATH,
        store_type=settings.OBJECT_STORE_TYPE,
        base_url=f"http://localhost:{settings.PORT}",
    )
