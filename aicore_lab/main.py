"""
AI Core Lab - FastAPI Application

Local emulator of the SAP AI Core lifecycle API. Provides endpoints for
registering object store secrets, executables and artifacts, creating
configurations, running executions and serving deployments.
"""

from __future__ import annotations
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging
import re

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request, status
from fastapi.responses import JSONResponse, PlainTextResponse

from aicore_lab.adapters.base import ObjectStoreError, normalize_key, resolve_artifact_url
from aicore_lab.config import configure_logging, get_settings
from aicore_lab.engine.executor import create_deployer, create_executor
from aicore_lab.engine.parser import ExecutableParser, ParserError
from aicore_lab.engine.planner import BindingError, ConfigurationBinder, get_planner
from aicore_lab.models import (
    TERMINAL_STATUSES,
    Artifact,
    ArtifactCreateRequest,
    ArtifactKind,
    ArtifactList,
    Configuration,
    ConfigurationCreateRequest,
    ConfigurationList,
    CreateResponse,
    Deployment,
    DeploymentList,
    Executable,
    ExecutableKind,
    ExecutableList,
    Execution,
    ExecutionCreateRequest,
    ExecutionList,
    ExecutionPlan,
    ExecutionStatus,
    HousingFeatures,
    ObjectStoreSecret,
    ObjectStoreSecretRequest,
    ScenarioList,
    SecretList,
    StatusPatchRequest,
    TargetStatus,
)
from aicore_lab.serving import ModelHolder, predict_response
from aicore_lab.storage import StorageManager, get_storage

configure_logging()
logger = logging.getLogger(__name__)

# Secret AI Core writes execution outputs through
OUTPUT_SECRET = "default"

RESOURCE_GROUP_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9.-]{0,252}$")


# =============================================================================
# APPLICATION SETUP
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()
    logger.info(f"{settings.APP_NAME} starting...")
    logger.info(f"Storage path: {get_storage().base_path.absolute()}")
    logger.info(f"Object store path: {settings.OBJECT_STORE_PATH}")
    yield
    logger.info(f"{settings.APP_NAME} shutting down...")
    model_holders.clear()


app = FastAPI(
    title="AI Core Lab",
    description="""
    ## Local SAP AI Core Emulator

    This API provides endpoints for:
    - **Object store secrets** scoping artifact URLs to bucket prefixes
    - **Executables** registered from WorkflowTemplate / ServingTemplate YAML
    - **Artifacts** referencing datasets and models in object storage
    - **Configurations** binding artifacts and parameters to executables
    - **Executions** training models locally
    - **Deployments** serving the house-price model

    ### Lifecycle
    1. Register a secret and the executables
    2. Register the training dataset artifact
    3. Create a training configuration and start an execution
    4. Create a serving configuration with the produced model and deploy it
    5. Call `<deploymentUrl>/v2/predict`
    """,
    version=get_settings().APP_VERSION,
    lifespan=lifespan,
)

# Progress of executions running in this process
active_executions: Dict[str, Dict[str, Any]] = {}

# Loaded models of running deployments
model_holders: Dict[str, ModelHolder] = {}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_resource_group(
    ai_resource_group: Optional[str] = Header(default=None, alias="AI-Resource-Group"),
) -> str:
    """Resource group from the AI-Resource-Group header."""
    if not ai_resource_group:
        return get_settings().RESOURCE_GROUP
    if not RESOURCE_GROUP_PATTERN.match(ai_resource_group):
        raise bad_request(
            "Invalid resource group",
            f"Resource group '{ai_resource_group}' must be alphanumeric with '-' or '.'",
        )
    return ai_resource_group


def not_found(kind: str, entity_id: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{kind} not found: {entity_id}",
    )


def bad_request(error: str, message: str, errors: Optional[List[str]] = None) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"error": error, "message": message, "errors": errors or []},
    )


def load_configuration(
    storage: StorageManager,
    configuration_id: str,
    resource_group: str,
) -> Configuration:
    configuration = storage.load_configuration(configuration_id)
    if configuration is None or configuration.resource_group != resource_group:
        raise not_found("Configuration", configuration_id)
    return configuration


def load_executable(
    storage: StorageManager,
    executable_id: str,
    resource_group: str,
) -> Executable:
    executable = storage.load_executable(executable_id, resource_group)
    if executable is None:
        raise bad_request(
            "Configuration validation failed",
            f"Executable '{executable_id}' is not registered",
        )
    return executable


def artifacts_by_id(storage: StorageManager, resource_group: str) -> Dict[str, Artifact]:
    return {a.id: a for a in storage.list_artifacts(resource_group)}


def create_plan(
    storage: StorageManager,
    entity_id: str,
    configuration: Configuration,
    executable: Executable,
) -> ExecutionPlan:
    """Plan an execution or deployment, mapping binding errors to 400."""
    try:
        return get_planner().create_plan(
            entity_id,
            configuration,
            executable,
            artifacts_by_id(storage, configuration.resource_group),
            output_secret=OUTPUT_SECRET,
        )
    except BindingError as e:
        raise bad_request("Configuration validation failed", e.message, e.errors)


def with_progress(execution: Execution) -> Execution:
    """Overlay in-process progress on a stored execution."""
    state = active_executions.get(execution.id)
    if state and execution.status not in TERMINAL_STATUSES:
        execution.progress_percent = state.get("progress_percent", execution.progress_percent)
    return execution


async def execute_run_async(
    execution: Execution,
    plan: ExecutionPlan,
    executable: Executable,
) -> None:
    """
    Run an execution in the background.

    The executor blocks, so it runs in the default thread pool.
    """
    storage = get_storage()
    executor = create_executor(storage)
    active_executions[execution.id] = {"progress_percent": 0, "message": "Scheduled"}

    def progress_callback(execution_id: str, percent: int, message: str):
        if execution_id in active_executions:
            active_executions[execution_id]["progress_percent"] = percent
            active_executions[execution_id]["message"] = message

    executor.set_progress_callback(progress_callback)

    try:
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(
            None,
            lambda: executor.execute(execution, plan, executable),
        )
        logger.info(f"Execution {execution.id} finished: {result.status.value}")
    finally:
        active_executions.pop(execution.id, None)


async def deploy_async(
    deployment: Deployment,
    plan: ExecutionPlan,
    executable: Executable,
) -> None:
    """Bring a deployment up in the background."""
    deployer = create_deployer(get_storage())
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, lambda: deployer.deploy(deployment, plan, executable))


# =============================================================================
# HEALTH
# =============================================================================

@app.get("/", tags=["Health"])
async def root():
    """Root endpoint with API information."""
    settings = get_settings()
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "status": "running",
        "endpoints": {
            "secrets": "/v2/admin/objectStoreSecrets",
            "executables": "POST /v2/admin/executables",
            "scenarios": "GET /v2/lm/scenarios",
            "artifacts": "/v2/lm/artifacts",
            "configurations": "/v2/lm/configurations",
            "executions": "/v2/lm/executions",
            "deployments": "/v2/lm/deployments",
            "inference": "/v2/inference/deployments/{deployment_id}/v2/predict",
        },
    }


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "active_executions": len(active_executions),
        "loaded_models": len([h for h in model_holders.values() if h.is_loaded]),
    }


# =============================================================================
# OBJECT STORE SECRETS
# =============================================================================

@app.post(
    "/v2/admin/objectStoreSecrets",
    response_model=CreateResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Secrets"],
)
async def create_secret(
    request: ObjectStoreSecretRequest,
    resource_group: str = Depends(get_resource_group),
) -> CreateResponse:
    """
    Register object store credentials.

    Credentials in `data` are accepted but never stored or returned.
    """
    storage = get_storage()
    if storage.load_secret(request.name, resource_group) is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Object store secret already exists: {request.name}",
        )

    try:
        path_prefix = normalize_key(request.path_prefix)
        normalize_key(request.bucket)
    except ObjectStoreError as e:
        raise bad_request("Secret validation failed", e.message)

    secret = ObjectStoreSecret(
        name=request.name,
        type=request.type,
        bucket=request.bucket,
        path_prefix=path_prefix,
        region=request.region,
        endpoint=request.endpoint,
        resource_group=resource_group,
    )
    storage.save_secret(secret)
    logger.info(f"Object store secret created: {secret.name} ({resource_group})")

    return CreateResponse(id=secret.name, message="Secret has been created")


@app.get("/v2/admin/objectStoreSecrets", response_model=SecretList, tags=["Secrets"])
async def list_secrets(resource_group: str = Depends(get_resource_group)) -> SecretList:
    secrets = get_storage().list_secrets(resource_group)
    return SecretList(count=len(secrets), resources=secrets)


@app.delete("/v2/admin/objectStoreSecrets/{name}", tags=["Secrets"])
async def delete_secret(name: str, resource_group: str = Depends(get_resource_group)):
    if not get_storage().delete_secret(name, resource_group):
        raise not_found("Object store secret", name)
    return {"id": name, "message": "Secret has been deleted"}


# =============================================================================
# EXECUTABLES AND SCENARIOS
# =============================================================================

@app.post(
    "/v2/admin/executables",
    response_model=CreateResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Executables"],
    summary="Register an executable from template YAML",
)
async def register_executable(
    request: Request,
    resource_group: str = Depends(get_resource_group),
) -> CreateResponse:
    """
    Register (or re-sync) an executable.

    **Request Body:** WorkflowTemplate or ServingTemplate YAML as plain text.
    """
    try:
        body = (await request.body()).decode("utf-8")
    except UnicodeDecodeError:
        raise bad_request("Template validation failed", "Template must be UTF-8 encoded YAML")
    try:
        executable = ExecutableParser().parse(body, resource_group)
    except ParserError as e:
        raise bad_request("Template validation failed", e.message, e.errors)

    get_storage().save_executable(executable)
    logger.info(f"Executable registered: {executable.id} ({executable.kind.value})")

    return CreateResponse(id=executable.id, message="Executable has been registered")


@app.get("/v2/lm/scenarios", response_model=ScenarioList, tags=["Executables"])
async def list_scenarios(resource_group: str = Depends(get_resource_group)) -> ScenarioList:
    scenarios = get_storage().list_scenarios(resource_group)
    return ScenarioList(count=len(scenarios), resources=scenarios)


@app.get(
    "/v2/lm/scenarios/{scenario_id}/executables",
    response_model=ExecutableList,
    tags=["Executables"],
)
async def list_executables(
    scenario_id: str,
    resource_group: str = Depends(get_resource_group),
) -> ExecutableList:
    executables = get_storage().list_executables(resource_group, scenario_id)
    if not executables:
        raise not_found("Scenario", scenario_id)
    return ExecutableList(count=len(executables), resources=executables)


@app.get(
    "/v2/lm/scenarios/{scenario_id}/executables/{executable_id}",
    response_model=Executable,
    tags=["Executables"],
)
async def get_executable(
    scenario_id: str,
    executable_id: str,
    resource_group: str = Depends(get_resource_group),
) -> Executable:
    executable = get_storage().load_executable(executable_id, resource_group)
    if executable is None or executable.scenario_id != scenario_id:
        raise not_found("Executable", executable_id)
    return executable


# =============================================================================
# ARTIFACTS
# =============================================================================

@app.post(
    "/v2/lm/artifacts",
    response_model=CreateResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Artifacts"],
)
async def create_artifact(
    request: ArtifactCreateRequest,
    resource_group: str = Depends(get_resource_group),
) -> CreateResponse:
    """
    Register a dataset or model already present in object storage.

    The URL must resolve through a registered object store secret.
    """
    storage = get_storage()

    if not storage.list_executables(resource_group, request.scenario_id):
        raise bad_request(
            "Artifact validation failed",
            f"Scenario '{request.scenario_id}' has no registered executables",
        )

    try:
        resolve_artifact_url(request.url, storage.list_secrets(resource_group))
    except ObjectStoreError as e:
        raise bad_request("Artifact validation failed", e.message, e.errors)

    artifact = Artifact(
        name=request.name,
        kind=request.kind,
        url=request.url,
        scenario_id=request.scenario_id,
        description=request.description,
        resource_group=resource_group,
    )
    storage.save_artifact(artifact)
    logger.info(f"Artifact registered: {artifact.id} ({artifact.kind.value}) -> {artifact.url}")

    return CreateResponse(id=artifact.id, message="Artifact acknowledged", url=artifact.url)


@app.get("/v2/lm/artifacts", response_model=ArtifactList, tags=["Artifacts"])
async def list_artifacts(
    scenarioId: Optional[str] = None,
    kind: Optional[ArtifactKind] = None,
    executionId: Optional[str] = None,
    resource_group: str = Depends(get_resource_group),
) -> ArtifactList:
    artifacts = get_storage().list_artifacts(
        resource_group,
        scenario_id=scenarioId,
        kind=kind,
        execution_id=executionId,
    )
    return ArtifactList(count=len(artifacts), resources=artifacts)


@app.get("/v2/lm/artifacts/{artifact_id}", response_model=Artifact, tags=["Artifacts"])
async def get_artifact(
    artifact_id: str,
    resource_group: str = Depends(get_resource_group),
) -> Artifact:
    artifact = get_storage().load_artifact(artifact_id)
    if artifact is None or artifact.resource_group != resource_group:
        raise not_found("Artifact", artifact_id)
    return artifact


# =============================================================================
# CONFIGURATIONS
# =============================================================================

@app.post(
    "/v2/lm/configurations",
    response_model=CreateResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Configurations"],
)
async def create_configuration(
    request: ConfigurationCreateRequest,
    resource_group: str = Depends(get_resource_group),
) -> CreateResponse:
    """Bind parameter values and registered artifacts to an executable."""
    storage = get_storage()
    executable = load_executable(storage, request.executable_id, resource_group)

    configuration = Configuration(
        **request.model_dump(),
        resource_group=resource_group,
    )

    errors = ConfigurationBinder().validate(
        configuration,
        executable,
        artifacts_by_id(storage, resource_group),
    )
    if errors:
        raise bad_request(
            "Configuration validation failed",
            f"Configuration '{configuration.name}' does not satisfy executable '{executable.id}'",
            errors,
        )

    storage.save_configuration(configuration)
    logger.info(f"Configuration created: {configuration.id} for {executable.id}")

    return CreateResponse(id=configuration.id, message="Configuration created")


@app.get("/v2/lm/configurations", response_model=ConfigurationList, tags=["Configurations"])
async def list_configurations(
    scenarioId: Optional[str] = None,
    resource_group: str = Depends(get_resource_group),
) -> ConfigurationList:
    configurations = get_storage().list_configurations(resource_group, scenarioId)
    return ConfigurationList(count=len(configurations), resources=configurations)


@app.get(
    "/v2/lm/configurations/{configuration_id}",
    response_model=Configuration,
    tags=["Configurations"],
)
async def get_configuration(
    configuration_id: str,
    resource_group: str = Depends(get_resource_group),
) -> Configuration:
    return load_configuration(get_storage(), configuration_id, resource_group)


# =============================================================================
# EXECUTIONS
# =============================================================================

@app.post(
    "/v2/lm/executions",
    response_model=CreateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["Executions"],
    summary="Start an execution of a workflow configuration",
)
async def create_execution(
    request: ExecutionCreateRequest,
    background_tasks: BackgroundTasks,
    resource_group: str = Depends(get_resource_group),
) -> CreateResponse:
    """
    Start a training execution.

    The execution runs asynchronously. Use GET /v2/lm/executions/{id} to
    monitor it; produced models appear as output artifacts.
    """
    storage = get_storage()
    configuration = load_configuration(storage, request.configuration_id, resource_group)
    executable = load_executable(storage, configuration.executable_id, resource_group)

    if executable.kind != ExecutableKind.WORKFLOW:
        raise bad_request(
            "Execution validation failed",
            f"Executable '{executable.id}' is a serving executable, create a deployment instead",
        )
    if executable.output_artifacts and storage.load_secret(OUTPUT_SECRET, resource_group) is None:
        raise bad_request(
            "Execution validation failed",
            f"Object store secret '{OUTPUT_SECRET}' is required to store output artifacts",
        )

    execution = Execution(
        configuration_id=configuration.id,
        configuration_name=configuration.name,
        scenario_id=configuration.scenario_id,
        executable_id=executable.id,
        resource_group=resource_group,
    )
    plan = create_plan(storage, execution.id, configuration, executable)
    storage.save_execution(execution)

    background_tasks.add_task(execute_run_async, execution, plan, executable)
    logger.info(f"Execution created: {execution.id} for configuration {configuration.id}")

    return CreateResponse(
        id=execution.id,
        message="Execution scheduled",
        status=execution.status,
    )


@app.get("/v2/lm/executions", response_model=ExecutionList, tags=["Executions"])
async def list_executions(
    scenarioId: Optional[str] = None,
    resource_group: str = Depends(get_resource_group),
) -> ExecutionList:
    executions = [
        with_progress(e) for e in get_storage().list_executions(resource_group, scenarioId)
    ]
    return ExecutionList(count=len(executions), resources=executions)


def load_execution(storage: StorageManager, execution_id: str, resource_group: str) -> Execution:
    execution = storage.load_execution(execution_id)
    if execution is None or execution.resource_group != resource_group:
        raise not_found("Execution", execution_id)
    return execution


@app.get("/v2/lm/executions/{execution_id}", response_model=Execution, tags=["Executions"])
async def get_execution(
    execution_id: str,
    resource_group: str = Depends(get_resource_group),
) -> Execution:
    return with_progress(load_execution(get_storage(), execution_id, resource_group))


@app.patch("/v2/lm/executions/{execution_id}", tags=["Executions"])
async def patch_execution(
    execution_id: str,
    request: StatusPatchRequest,
    resource_group: str = Depends(get_resource_group),
):
    """Request an execution to stop."""
    storage = get_storage()
    load_execution(storage, execution_id, resource_group)

    if request.target_status != TargetStatus.STOPPED:
        raise bad_request(
            "Invalid target status",
            f"Executions can only be stopped, got '{request.target_status.value}'",
        )

    def request_stop(execution: Execution) -> None:
        if execution.status in TERMINAL_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Execution already finished with status {execution.status.value}",
            )
        execution.target_status = TargetStatus.STOPPED
        if execution.status == ExecutionStatus.UNKNOWN:
            execution.status = ExecutionStatus.STOPPED
            execution.completion_time = datetime.utcnow()
        else:
            execution.status = ExecutionStatus.STOPPING

    # Only the stop fields change; the running executor owns everything else
    if storage.update_execution(execution_id, request_stop) is None:
        raise not_found("Execution", execution_id)

    return {"id": execution_id, "message": "Execution modification scheduled"}


@app.delete("/v2/lm/executions/{execution_id}", tags=["Executions"])
async def delete_execution(
    execution_id: str,
    resource_group: str = Depends(get_resource_group),
):
    """
    Delete an execution record.

    Output artifacts stay registered.
    """
    storage = get_storage()
    with storage.lock:
        execution = load_execution(storage, execution_id, resource_group)
        if execution.status not in TERMINAL_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Cannot delete an execution that has not finished",
            )
        storage.delete_execution(execution_id)
    return {"id": execution_id, "message": "Execution deleted"}


# =============================================================================
# DEPLOYMENTS
# =============================================================================

def load_deployment(storage: StorageManager, deployment_id: str, resource_group: str) -> Deployment:
    deployment = storage.load_deployment(deployment_id)
    if deployment is None or deployment.resource_group != resource_group:
        raise not_found("Deployment", deployment_id)
    return deployment


@app.post(
    "/v2/lm/deployments",
    response_model=CreateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["Deployments"],
)
async def create_deployment(
    request: ExecutionCreateRequest,
    background_tasks: BackgroundTasks,
    resource_group: str = Depends(get_resource_group),
) -> CreateResponse:
    """Deploy a serving configuration."""
    storage = get_storage()
    configuration = load_configuration(storage, request.configuration_id, resource_group)
    executable = load_executable(storage, configuration.executable_id, resource_group)

    if executable.kind != ExecutableKind.SERVING:
        raise bad_request(
            "Deployment validation failed",
            f"Executable '{executable.id}' is a workflow executable, create an execution instead",
        )

    deployment = Deployment(
        configuration_id=configuration.id,
        configuration_name=configuration.name,
        scenario_id=configuration.scenario_id,
        executable_id=executable.id,
        resource_group=resource_group,
    )
    plan = create_plan(storage, deployment.id, configuration, executable)
    storage.save_deployment(deployment)

    background_tasks.add_task(deploy_async, deployment, plan, executable)
    logger.info(f"Deployment created: {deployment.id} for configuration {configuration.id}")

    return CreateResponse(
        id=deployment.id,
        message="Deployment scheduled",
        status=deployment.status,
    )


@app.get("/v2/lm/deployments", response_model=DeploymentList, tags=["Deployments"])
async def list_deployments(
    scenarioId: Optional[str] = None,
    resource_group: str = Depends(get_resource_group),
) -> DeploymentList:
    deployments = get_storage().list_deployments(resource_group, scenarioId)
    return DeploymentList(count=len(deployments), resources=deployments)


@app.get("/v2/lm/deployments/{deployment_id}", response_model=Deployment, tags=["Deployments"])
async def get_deployment(
    deployment_id: str,
    resource_group: str = Depends(get_resource_group),
) -> Deployment:
    return load_deployment(get_storage(), deployment_id, resource_group)


@app.patch("/v2/lm/deployments/{deployment_id}", tags=["Deployments"])
async def patch_deployment(
    deployment_id: str,
    request: StatusPatchRequest,
    resource_group: str = Depends(get_resource_group),
):
    """Stop a deployment."""
    storage = get_storage()
    load_deployment(storage, deployment_id, resource_group)

    if request.target_status != TargetStatus.STOPPED:
        raise bad_request(
            "Invalid target status",
            f"Deployments can only be stopped, got '{request.target_status.value}'",
        )

    with storage.lock:
        deployment = load_deployment(storage, deployment_id, resource_group)
        if deployment.status in TERMINAL_STATUSES:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Deployment already finished with status {deployment.status.value}",
            )
        create_deployer(storage).stop(deployment)
    holder = model_holders.pop(deployment.id, None)
    if holder:
        holder.unload()

    return {"id": deployment.id, "message": "Deployment modification scheduled"}


@app.delete("/v2/lm/deployments/{deployment_id}", tags=["Deployments"])
async def delete_deployment(
    deployment_id: str,
    resource_group: str = Depends(get_resource_group),
):
    """
    Delete a deployment.

    **Warning:** Only stopped or dead deployments can be deleted.
    """
    storage = get_storage()
    with storage.lock:
        deployment = load_deployment(storage, deployment_id, resource_group)
        if deployment.status not in (ExecutionStatus.STOPPED, ExecutionStatus.DEAD):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Stop the deployment before deleting it",
            )
        storage.delete_deployment(deployment_id)
    return {"id": deployment_id, "message": "Deployment deleted"}


# =============================================================================
# INFERENCE
# =============================================================================

def running_model(deployment_id: str, resource_group: str) -> ModelHolder:
    """Model holder of a running deployment, loaded on first use."""
    deployment = load_deployment(get_storage(), deployment_id, resource_group)
    if deployment.status != ExecutionStatus.RUNNING or not deployment.model_path:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Deployment {deployment_id} is {deployment.status.value}",
        )

    holder = model_holders.get(deployment_id)
    if holder is None:
        holder = ModelHolder()
        # Failed loads are retried on the next call
        if holder.load(deployment.model_path):
            model_holders[deployment_id] = holder
    return holder


@app.get(
    "/v2/inference/deployments/{deployment_id}/v2/greet",
    response_class=PlainTextResponse,
    tags=["Inference"],
)
async def deployment_greet(
    deployment_id: str,
    resource_group: str = Depends(get_resource_group),
) -> str:
    """Greet route of a deployed inference server."""
    return running_model(deployment_id, resource_group).greet()


@app.post(
    "/v2/inference/deployments/{deployment_id}/v2/predict",
    response_class=PlainTextResponse,
    tags=["Inference"],
)
async def deployment_predict(
    deployment_id: str,
    features: HousingFeatures,
    resource_group: str = Depends(get_resource_group),
):
    """Predict route of a deployed inference server."""
    return predict_response(running_model(deployment_id, resource_group), features)


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(Exception)
async def global_exception_handler(request, exc: Exception):
    """Global exception handler."""
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": str(exc),
        },
    )


# =============================================================================
# MAIN
# =============================================================================

def main() -> None:
    """Run the emulator API."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "aicore_lab.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
