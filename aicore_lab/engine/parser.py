"""
AI Core Lab - Executable Parser

Parses and validates AI Core executable templates: Argo WorkflowTemplates for
training and KServe based ServingTemplates for inference. Transforms raw YAML
into validated Executable models.
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional, Tuple
import logging
import re

import yaml
from pydantic import ValidationError

from aicore_lab.models import (
    ArtifactKind,
    ContainerSpec,
    Executable,
    ExecutableArtifact,
    ExecutableKind,
    ExecutableParameter,
)

logger = logging.getLogger(__name__)

# Annotation and label keys AI Core reads from template metadata
SCENARIO_NAME = "scenarios.ai.sap.com/name"
SCENARIO_DESCRIPTION = "scenarios.ai.sap.com/description"
SCENARIO_ID = "scenarios.ai.sap.com/id"
EXECUTABLE_NAME = "executables.ai.sap.com/name"
EXECUTABLE_DESCRIPTION = "executables.ai.sap.com/description"
VERSION = "ai.sap.com/version"
RESOURCE_PLAN = "ai.sap.com/resourcePlan"
ARTIFACT_KIND_PREFIX = "artifacts.ai.sap.com/"

PLACEHOLDER_PATTERN = re.compile(
    r"\{\{\s*(inputs\.parameters|workflow\.parameters|inputs\.artifacts)\.([A-Za-z0-9_\-]+)\s*\}\}"
)
EXECUTABLE_ID_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")

DEFAULT_MODEL_PATH = "/mnt/models"


class ParserError(Exception):
    """Exception raised for parser errors."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)


def find_placeholders(values: Iterable[str]) -> List[Tuple[str, str]]:
    """
    Find template placeholders in strings.

    Returns:
        List of (scope, name) where scope is "parameters" or "artifacts"
    """
    found = []
    for value in values:
        for scope, name in PLACEHOLDER_PATTERN.findall(value or ""):
            found.append(("artifacts" if scope.endswith("artifacts") else "parameters", name))
    return found


class ExecutableParser:
    """
    Parser for AI Core executable templates.

    Responsibilities:
    - Parse YAML content
    - Validate metadata required to register the executable
    - Transform workflow or serving templates to an Executable
    - Check placeholders, names and resource plans
    """

    KINDS = {
        "WorkflowTemplate": ExecutableKind.WORKFLOW,
        "ServingTemplate": ExecutableKind.SERVING,
    }

    API_VERSIONS = {
        "WorkflowTemplate": "argoproj.io/v1alpha1",
        "ServingTemplate": "ai.sap.com/v1alpha1",
    }

    RESOURCE_PLANS = {
        "starter",
        "basic",
        "basic.8x",
        "train.l",
        "infer.s",
        "infer.m",
        "infer.l",
    }

    def __init__(self):
        """Initialize parser."""
        self.logger = logging.getLogger(__name__)

    def parse(self, yaml_content: str, resource_group: str = "default") -> Executable:
        """
        Parse template YAML into an Executable.

        Args:
            yaml_content: Template YAML string
            resource_group: Resource group the executable is registered in

        Returns:
            Validated Executable

        Raises:
            ParserError: If parsing or validation fails
        """
        # Step 1: Parse YAML syntax
        document = self._parse_yaml(yaml_content)

        # Step 2: Validate structure
        validation_errors = self._validate_structure(document)
        if validation_errors:
            raise ParserError("Template validation failed", errors=validation_errors)

        # Step 3: Transform to domain model
        try:
            if self.KINDS[document["kind"]] == ExecutableKind.WORKFLOW:
                executable = self._transform_workflow(document, resource_group)
            else:
                executable = self._transform_serving(document, resource_group)
        except ValidationError as e:
            errors = [f"{err['loc']}: {err['msg']}" for err in e.errors()]
            raise ParserError("Executable validation failed", errors=errors)

        # Step 4: Semantic validation
        semantic_errors = self._validate_semantics(executable)
        if semantic_errors:
            raise ParserError("Semantic validation failed", errors=semantic_errors)

        self.logger.info(
            f"Parsed {executable.kind.value} executable '{executable.id}' "
            f"for scenario '{executable.scenario_id}'"
        )
        return executable

    def _parse_yaml(self, yaml_content: str) -> Dict[str, Any]:
        try:
            document = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ParserError(f"YAML syntax error: {str(e)}")
        if document is None:
            raise ParserError("Empty template")
        if not isinstance(document, dict):
            raise ParserError("Template must be a YAML mapping/dictionary")
        return document

    def _load_embedded(self, value: Any, field: str) -> Dict[str, Any]:
        """
        Load a mapping that serving templates embed as a YAML string.

        Raises:
            ParserError: If the embedded YAML is invalid
        """
        if value is None:
            return {}
        if isinstance(value, dict):
            return value
        if isinstance(value, str):
            try:
                loaded = yaml.safe_load(value)
            except yaml.YAMLError as e:
                raise ParserError(f"YAML syntax error in {field}: {str(e)}")
            if loaded is None:
                return {}
            if isinstance(loaded, dict):
                return loaded
        raise ParserError(f"{field} must be a mapping")

    def _mapping(self, value: Any, field: str) -> Dict[str, Any]:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise ParserError(f"{field} must be a mapping")
        return value

    def _list(self, value: Any, field: str) -> List[Any]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ParserError(f"{field} must be a list")
        return value

    def _validate_structure(self, document: Dict[str, Any]) -> List[str]:
        """
        Validate template structure.

        Returns:
            List of validation errors
        """
        errors = []

        kind = document.get("kind")
        if not isinstance(kind, str) or kind not in self.KINDS:
            errors.append(
                f"kind must be one of {sorted(self.KINDS)}, got '{kind}'"
            )
        elif document.get("apiVersion") != self.API_VERSIONS[kind]:
            errors.append(
                f"apiVersion of a {kind} must be '{self.API_VERSIONS[kind]}'"
            )

        metadata = document.get("metadata")
        if not isinstance(metadata, dict):
            errors.append("Missing required section: 'metadata'")
        else:
            if not metadata.get("name"):
                errors.append("metadata.name is required")

            annotations = metadata.get("annotations") or {}
            if not isinstance(annotations, dict):
                errors.append("metadata.annotations must be a mapping")
            elif not annotations.get(SCENARIO_NAME):
                errors.append(f"metadata.annotations['{SCENARIO_NAME}'] is required")

            labels = metadata.get("labels") or {}
            if not isinstance(labels, dict):
                errors.append("metadata.labels must be a mapping")
            else:
                for label in (SCENARIO_ID, VERSION):
                    if not labels.get(label):
                        errors.append(f"metadata.labels['{label}'] is required")

        if not isinstance(document.get("spec"), dict):
            errors.append("Missing required section: 'spec'")

        return errors

    def _common_fields(self, document: Dict[str, Any], resource_group: str) -> Dict[str, Any]:
        metadata = document["metadata"]
        annotations = metadata.get("annotations") or {}
        labels = metadata.get("labels") or {}
        return {
            "id": str(metadata["name"]),
            "name": str(annotations.get(EXECUTABLE_NAME) or metadata["name"]),
            "description": annotations.get(EXECUTABLE_DESCRIPTION),
            "scenario_id": str(labels[SCENARIO_ID]),
            "scenario_name": str(annotations[SCENARIO_NAME]),
            "scenario_description": annotations.get(SCENARIO_DESCRIPTION),
            "version_id": str(labels[VERSION]),
            "resource_group": resource_group,
        }

    def _artifact_kinds(self, document: Dict[str, Any]) -> Dict[str, ArtifactKind]:
        """Collect artifacts.ai.sap.com/<name>.kind annotations."""
        annotations = document["metadata"].get("annotations") or {}
        kinds = {}
        for key, value in annotations.items():
            if not isinstance(key, str):
                continue
            if key.startswith(ARTIFACT_KIND_PREFIX) and key.endswith(".kind"):
                name = key[len(ARTIFACT_KIND_PREFIX):-len(".kind")]
                try:
                    kinds[name] = ArtifactKind(str(value).lower())
                except ValueError:
                    raise ParserError(
                        f"Unknown artifact kind '{value}' for artifact '{name}'"
                    )
        return kinds

    def _parameters(self, entries: Any, field: str) -> List[ExecutableParameter]:
        if entries is None:
            return []
        if not isinstance(entries, list):
            raise ParserError(f"{field} must be a list")
        parameters = []
        for i, entry in enumerate(entries):
            if not isinstance(entry, dict) or not entry.get("name"):
                raise ParserError(f"{field}[{i}].name is required")
            default = entry.get("default", entry.get("value"))
            parameters.append(
                ExecutableParameter(
                    name=str(entry["name"]),
                    default=None if default is None else str(default),
                    type=str(entry.get("type", "string")),
                    description=entry.get("description"),
                )
            )
        return parameters

    def _artifacts(
        self,
        entries: Any,
        field: str,
        kinds: Dict[str, ArtifactKind],
        default_path: Optional[str] = None,
    ) -> List[ExecutableArtifact]:
        if entries is None:
            return []
        if not isinstance(entries, list):
            raise ParserError(f"{field} must be a list")
        artifacts = []
        for i, entry in enumerate(entries):
            if not isinstance(entry, dict) or not entry.get("name"):
                raise ParserError(f"{field}[{i}].name is required")
            name = str(entry["name"])
            global_name = entry.get("globalName")
            artifacts.append(
                ExecutableArtifact(
                    name=name,
                    path=entry.get("path", default_path),
                    kind=kinds.get(name)
                    or (kinds.get(global_name) if isinstance(global_name, str) else None),
                    global_name=global_name,
                    description=entry.get("description"),
                )
            )
        return artifacts

    def _env(self, entries: Any, field: str) -> Dict[str, str]:
        if not entries:
            return {}
        if isinstance(entries, dict):
            return {str(k): "" if v is None else str(v) for k, v in entries.items()}
        return {
            str(e["name"]): "" if e.get("value") is None else str(e["value"])
            for e in self._list(entries, field)
            if isinstance(e, dict) and e.get("name")
        }

    def _container(
        self,
        container: Dict[str, Any],
        field: str,
        port: Optional[int] = None,
    ) -> ContainerSpec:
        return ContainerSpec(
            image=str(container["image"]),
            command=[str(c) for c in self._list(container.get("command"), f"{field}.command")],
            args=[str(a) for a in self._list(container.get("args"), f"{field}.args")],
            env=self._env(container.get("env"), f"{field}.env"),
            port=port,
        )

    def _container_template(self, templates: List[Any], entrypoint: Optional[str]) -> Dict[str, Any]:
        """
        Find the template whose container the workflow runs.

        An entrypoint with steps must reference exactly one template.
        """
        by_name = {
            t["name"]: t for t in templates if isinstance(t, dict) and isinstance(t.get("name"), str)
        }
        if entrypoint is not None and not isinstance(entrypoint, str):
            raise ParserError("spec.entrypoint must be a template name")
        if entrypoint:
            template = by_name.get(entrypoint)
            if template is None:
                raise ParserError(f"Entrypoint template '{entrypoint}' not found")
        else:
            template = templates[0]
        if not isinstance(template, dict):
            raise ParserError("spec.templates entries must be mappings")

        steps = template.get("steps")
        if not steps:
            return template

        referenced = []
        for group in self._list(steps, f"templates['{template.get('name')}'].steps"):
            for step in group if isinstance(group, list) else [group]:
                if isinstance(step, dict) and isinstance(step.get("template"), str):
                    referenced.append(step["template"])
        if len(referenced) != 1:
            raise ParserError(
                f"Entrypoint '{template.get('name')}' must run exactly one step, "
                f"got {len(referenced)}",
                errors=["Only single-container workflow templates are supported"],
            )
        if referenced[0] not in by_name:
            raise ParserError(f"Step template '{referenced[0]}' not found")
        return by_name[referenced[0]]

    def _transform_workflow(self, document: Dict[str, Any], resource_group: str) -> Executable:
        """Transform an Argo WorkflowTemplate."""
        spec = document["spec"]
        templates = spec.get("templates") or []
        if not isinstance(templates, list) or not templates:
            raise ParserError("spec.templates must be a non-empty list")

        template = self._container_template(templates, spec.get("entrypoint"))
        container = template.get("container")
        if not isinstance(container, dict) or not container.get("image"):
            raise ParserError(
                f"Template '{template.get('name')}' must define a container with an image",
                errors=["Only single-container workflow templates are supported"],
            )

        field = f"templates['{template.get('name')}']"
        kinds = self._artifact_kinds(document)
        inputs = self._mapping(template.get("inputs"), f"{field}.inputs")
        outputs = self._mapping(template.get("outputs"), f"{field}.outputs")
        template_metadata = self._mapping(template.get("metadata"), f"{field}.metadata")
        template_labels = self._mapping(template_metadata.get("labels"), f"{field}.metadata.labels")
        labels = document["metadata"].get("labels") or {}

        arguments = self._mapping(spec.get("arguments"), "spec.arguments")
        parameters = self._parameters(arguments.get("parameters"), "spec.arguments.parameters")
        parameters += self._parameters(inputs.get("parameters"), f"{field}.inputs.parameters")

        return Executable(
            **self._common_fields(document, resource_group),
            kind=ExecutableKind.WORKFLOW,
            resource_plan=str(
                template_labels.get(RESOURCE_PLAN) or labels.get(RESOURCE_PLAN) or "starter"
            ),
            parameters=parameters,
            input_artifacts=self._artifacts(inputs.get("artifacts"), "inputs.artifacts", kinds),
            output_artifacts=self._artifacts(outputs.get("artifacts"), "outputs.artifacts", kinds),
            container=self._container(container, f"{field}.container"),
        )

    def _transform_serving(self, document: Dict[str, Any], resource_group: str) -> Executable:
        """Transform a ServingTemplate with its embedded KServe predictor."""
        spec = document["spec"]
        inputs = self._mapping(spec.get("inputs"), "spec.inputs")
        template = self._mapping(spec.get("template"), "spec.template")
        template_metadata = self._mapping(template.get("metadata"), "spec.template.metadata")
        template_labels = self._load_embedded(
            template_metadata.get("labels"), "spec.template.metadata.labels"
        )
        predictor_spec = self._load_embedded(template.get("spec"), "spec.template.spec")

        field = "spec.template.spec.predictor"
        predictor = self._mapping(predictor_spec.get("predictor"), field)
        containers = self._list(predictor.get("containers"), f"{field}.containers")
        if not containers or not isinstance(containers[0], dict) or not containers[0].get("image"):
            raise ParserError(f"{field}.containers[0].image is required")
        container = containers[0]

        port = None
        ports = self._list(container.get("ports"), f"{field}.containers[0].ports")
        if ports and isinstance(ports[0], dict) and ports[0].get("containerPort") is not None:
            try:
                port = int(ports[0]["containerPort"])
            except (TypeError, ValueError):
                raise ParserError(f"{field}.containers[0].ports[0].containerPort must be an integer")

        kinds = self._artifact_kinds(document)
        labels = document["metadata"].get("labels") or {}

        return Executable(
            **self._common_fields(document, resource_group),
            kind=ExecutableKind.SERVING,
            resource_plan=str(
                template_labels.get(RESOURCE_PLAN) or labels.get(RESOURCE_PLAN) or "starter"
            ),
            parameters=self._parameters(inputs.get("parameters"), "spec.inputs.parameters"),
            input_artifacts=self._artifacts(
                inputs.get("artifacts"), "spec.inputs.artifacts", kinds, DEFAULT_MODEL_PATH
            ),
            container=self._container(container, f"{field}.containers[0]", port),
            min_replicas=predictor.get("minReplicas"),
            max_replicas=predictor.get("maxReplicas"),
        )

    def _validate_semantics(self, executable: Executable) -> List[str]:
        """
        Validate semantic correctness of the executable.

        Returns:
            List of semantic validation errors
        """
        errors = []

        if len(executable.id) > 64 or not EXECUTABLE_ID_PATTERN.match(executable.id):
            errors.append(
                f"Executable id '{executable.id}' must be lower-case alphanumerics "
                f"and '-', at most 64 characters"
            )

        if executable.resource_plan not in self.RESOURCE_PLANS:
            errors.append(f"Unknown resource plan '{executable.resource_plan}'")

        parameter_names = [p.name for p in executable.parameters]
        if len(parameter_names) != len(set(parameter_names)):
            errors.append("Duplicate parameter names found")

        input_names = [a.name for a in executable.input_artifacts]
        if len(input_names) != len(set(input_names)):
            errors.append("Duplicate input artifact names found")

        output_names = [a.global_name or a.name for a in executable.output_artifacts]
        if len(output_names) != len(set(output_names)):
            errors.append("Duplicate output artifact names found")

        container = executable.container
        strings = container.command + container.args + list(container.env.values())
        for scope, name in find_placeholders(strings):
            declared = parameter_names if scope == "parameters" else input_names
            if name not in declared:
                errors.append(f"Placeholder references undeclared {scope[:-1]} '{name}'")

        if (
            executable.kind == ExecutableKind.SERVING
            and executable.min_replicas is not None
            and executable.max_replicas is not None
            and executable.min_replicas > executable.max_replicas
        ):
            errors.append("minReplicas must not exceed maxReplicas")

        return errors

    def parse_file(self, file_path: str, resource_group: str = "default") -> Executable:
        """
        Parse a template from file.

        Raises:
            ParserError: If file cannot be read or parsed
        """
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                yaml_content = f.read()
        except IOError as e:
            raise ParserError(f"Cannot read file: {str(e)}")

        return self.parse(yaml_content, resource_group)

    def validate_only(self, yaml_content: str) -> Tuple[bool, List[str]]:
        """
        Validate a template without returning the executable.

        Returns:
            Tuple of (is_valid, error_list)
        """
        try:
            self.parse(yaml_content)
            return True, []
        except ParserError as e:
            return False, e.errors or [e.message]
