"""
AI Core Lab - Domain Models

Pydantic models for the AI Core entities (object store secrets, executables,
artifacts, configurations, executions, deployments), the execution plans the
planner produces, and the house-price model's training and inference payloads.

AI Core speaks camelCase JSON; every lifecycle model accepts and emits camelCase
aliases while staying snake_case in Python.
"""

from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def generate_id() -> str:
    """Generate a short unique entity id."""
    return uuid.uuid4().hex[:12]


# =============================================================================
# ENUMS
# =============================================================================

class ExecutionStatus(str, Enum):
    """Status of an execution or deployment."""
    UNKNOWN = "UNKNOWN"
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    DEAD = "DEAD"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"


class TargetStatus(str, Enum):
    """Status a client may request for an execution or deployment."""
    COMPLETED = "COMPLETED"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"
    DELETED = "DELETED"


class ArtifactKind(str, Enum):
    """Kinds of artifacts AI Core tracks."""
    MODEL = "model"
    DATASET = "dataset"
    RESULTSET = "resultset"
    OTHER = "other"


class ExecutableKind(str, Enum):
    """Template kinds an executable can be registered from."""
    WORKFLOW = "workflow"
    SERVING = "serving"


TERMINAL_STATUSES = {
    ExecutionStatus.COMPLETED,
    ExecutionStatus.DEAD,
    ExecutionStatus.STOPPED,
}


class AICoreModel(BaseModel):
    """Base for models exchanged with AI Core clients."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )


# =============================================================================
# OBJECT STORE SECRETS
# =============================================================================

class ObjectStoreSecretRequest(AICoreModel):
    """Request to register object store credentials."""
    name: str = Field(..., description="Secret name used in ai:// URLs")
    type: str = Field(default="S3", description="Object store type")
    bucket: str = Field(..., description="Bucket name")
    path_prefix: str = Field(default="", description="Prefix all paths are scoped to")
    region: Optional[str] = None
    endpoint: Optional[str] = None
    data: Dict[str, str] = Field(
        default_factory=dict,
        description="Credentials (access key id, secret access key). Never stored.",
    )


class ObjectStoreSecret(AICoreModel):
    """Stored object store secret metadata."""
    name: str
    type: str = "S3"
    bucket: str
    path_prefix: str = ""
    region: Optional[str] = None
    endpoint: Optional[str] = None
    resource_group: str = "default"
    created_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# EXECUTABLES (parsed from templates)
# =============================================================================

class ExecutableParameter(AICoreModel):
    """Input parameter declared by an executable."""
    name: str
    default: Optional[str] = None
    type: str = "string"
    description: Optional[str] = None


class ExecutableArtifact(AICoreModel):
    """Input or output artifact declared by an executable."""
    name: str
    path: Optional[str] = None
    kind: Optional[ArtifactKind] = None
    global_name: Optional[str] = None
    description: Optional[str] = None


class ContainerSpec(AICoreModel):
    """Container the executable runs."""
    image: str
    command: List[str] = Field(default_factory=list)
    args: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)
    port: Optional[int] = None


class Executable(AICoreModel):
    """Workflow or serving executable registered from a template."""
    id: str = Field(..., description="Executable id (template metadata.name)")
    name: str
    description: Optional[str] = None
    scenario_id: str
    scenario_name: str
    scenario_description: Optional[str] = None
    version_id: str
    kind: ExecutableKind
    resource_plan: str = "starter"
    parameters: List[ExecutableParameter] = Field(default_factory=list)
    input_artifacts: List[ExecutableArtifact] = Field(default_factory=list)
    output_artifacts: List[ExecutableArtifact] = Field(default_factory=list)
    container: ContainerSpec
    min_replicas: Optional[int] = None
    max_replicas: Optional[int] = None
    resource_group: str = "default"
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def get_parameter(self, name: str) -> Optional[ExecutableParameter]:
        for parameter in self.parameters:
            if parameter.name == name:
                return parameter
        return None

    def get_input_artifact(self, name: str) -> Optional[ExecutableArtifact]:
        for artifact in self.input_artifacts:
            if artifact.name == name:
                return artifact
        return None


class Scenario(AICoreModel):
    """Scenario grouping executables, derived from registered templates."""
    id: str
    name: str
    description: Optional[str] = None
    executable_ids: List[str] = Field(default_factory=list)


# =============================================================================
# ARTIFACTS
# =============================================================================

class ArtifactCreateRequest(AICoreModel):
    """Request to register an artifact."""
    name: str
    kind: ArtifactKind
    url: str = Field(..., description="ai://<secret>/<path> URL")
    scenario_id: str
    description: Optional[str] = None


class Artifact(AICoreModel):
    """Registered reference to a dataset or model in object storage."""
    id: str = Field(default_factory=generate_id)
    name: str
    kind: ArtifactKind
    url: str
    scenario_id: str
    execution_id: Optional[str] = None
    description: Optional[str] = None
    resource_group: str = "default"
    created_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# CONFIGURATIONS
# =============================================================================

class ParameterBinding(AICoreModel):
    """Concrete value for an executable parameter."""
    key: str
    value: str


class ArtifactBinding(AICoreModel):
    """Registered artifact bound to an executable input."""
    key: str
    artifact_id: str


class ConfigurationCreateRequest(AICoreModel):
    """Request to create a configuration."""
    name: str
    executable_id: str
    scenario_id: str
    parameter_bindings: List[ParameterBinding] = Field(default_factory=list)
    input_artifact_bindings: List[ArtifactBinding] = Field(default_factory=list)


class Configuration(ConfigurationCreateRequest):
    """Binding of artifacts and parameter values to an executable."""
    id: str = Field(default_factory=generate_id)
    resource_group: str = "default"
    created_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# EXECUTIONS AND DEPLOYMENTS
# =============================================================================

class ResolvedArtifact(AICoreModel):
    """Artifact with its object store URL and container path resolved."""
    name: str
    url: str
    path: Optional[str] = None
    artifact_id: Optional[str] = None
    kind: Optional[ArtifactKind] = None
    global_name: Optional[str] = None


class ExecutionPlan(AICoreModel):
    """Fully resolved instructions for running one configuration."""
    execution_id: str
    executable_id: str
    kind: ExecutableKind
    parameters: Dict[str, str] = Field(default_factory=dict)
    input_artifacts: List[ResolvedArtifact] = Field(default_factory=list)
    output_artifacts: List[ResolvedArtifact] = Field(default_factory=list)
    container: ContainerSpec
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ExecutionCreateRequest(AICoreModel):
    """Request to start an execution or deployment."""
    configuration_id: str


class Execution(AICoreModel):
    """Batch run of a workflow configuration."""
    id: str = Field(default_factory=generate_id)
    configuration_id: str
    configuration_name: Optional[str] = None
    scenario_id: str
    executable_id: str
    status: ExecutionStatus = ExecutionStatus.UNKNOWN
    target_status: TargetStatus = TargetStatus.COMPLETED
    status_message: Optional[str] = None
    progress_percent: int = 0
    output_artifacts: List[Artifact] = Field(default_factory=list)
    metrics: Dict[str, Any] = Field(default_factory=dict)
    resource_group: str = "default"
    created_at: datetime = Field(default_factory=datetime.utcnow)
    start_time: Optional[datetime] = None
    completion_time: Optional[datetime] = None


class Deployment(AICoreModel):
    """Long-lived inference server for a serving configuration."""
    id: str = Field(default_factory=generate_id)
    configuration_id: str
    configuration_name: Optional[str] = None
    scenario_id: str
    executable_id: str
    status: ExecutionStatus = ExecutionStatus.UNKNOWN
    target_status: TargetStatus = TargetStatus.RUNNING
    status_message: Optional[str] = None
    deployment_url: Optional[str] = None
    model_path: Optional[str] = None
    resource_group: str = "default"
    created_at: datetime = Field(default_factory=datetime.utcnow)
    start_time: Optional[datetime] = None
    completion_time: Optional[datetime] = None


class StatusPatchRequest(AICoreModel):
    """Request to change the target status of an execution or deployment."""
    target_status: TargetStatus


# =============================================================================
# API MODELS
# =============================================================================

class CreateResponse(AICoreModel):
    """Response after creating an entity."""
    id: str
    message: str
    status: Optional[ExecutionStatus] = None
    url: Optional[str] = None


class SecretList(AICoreModel):
    count: int
    resources: List[ObjectStoreSecret] = Field(default_factory=list)


class ScenarioList(AICoreModel):
    count: int
    resources: List[Scenario] = Field(default_factory=list)


class ExecutableList(AICoreModel):
    count: int
    resources: List[Executable] = Field(default_factory=list)


class ArtifactList(AICoreModel):
    count: int
    resources: List[Artifact] = Field(default_factory=list)


class ConfigurationList(AICoreModel):
    count: int
    resources: List[Configuration] = Field(default_factory=list)


class ExecutionList(AICoreModel):
    count: int
    resources: List[Execution] = Field(default_factory=list)


class DeploymentList(AICoreModel):
    count: int
    resources: List[Deployment] = Field(default_factory=list)


# =============================================================================
# HOUSE PRICE MODEL
# =============================================================================

FEATURE_COLUMNS: List[str] = [
    "MedInc",
    "HouseAge",
    "AveRooms",
    "AveBedrms",
    "Population",
    "AveOccup",
    "Latitude",
    "Longitude",
]


class HousingFeatures(BaseModel):
    """The eight California housing features a prediction needs."""
    model_config = ConfigDict(allow_inf_nan=False)

    MedInc: float
    HouseAge: float
    AveRooms: float
    AveBedrms: float
    Population: float
    AveOccup: float
    Latitude: float
    Longitude: float

    def to_row(self) -> List[float]:
        """Feature values in training column order."""
        return [getattr(self, name) for name in FEATURE_COLUMNS]


class TrainingReport(BaseModel):
    """Hold-out evaluation of a trained model."""
    model_config = ConfigDict(protected_namespaces=())

    rows_total: int
    rows_train: int
    rows_test: int
    features: List[str] = Field(default_factory=lambda: list(FEATURE_COLUMNS))
    max_depth: Optional[int] = None
    tree_depth: int = 0
    r2: float
    mae: float
    rmse: float
    model_path: Optional[str] = None
    trained_at: datetime = Field(default_factory=datetime.utcnow)
