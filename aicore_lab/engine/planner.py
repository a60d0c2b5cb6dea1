"""
AI Core Lab - Configuration Binding and Execution Planning

Checks that a configuration satisfies its executable and turns the pair into
an execution plan: concrete parameter values, input artifact URLs with their
container paths, output artifact destinations and a container spec with every
placeholder substituted.
"""

from __future__ import annotations
from datetime import datetime
from typing import Dict, List, Optional
import logging

from aicore_lab.engine.parser import PLACEHOLDER_PATTERN
from aicore_lab.models import (
    Artifact,
    Configuration,
    ContainerSpec,
    Executable,
    ExecutionPlan,
    ResolvedArtifact,
)

logger = logging.getLogger(__name__)


class BindingError(Exception):
    """Exception raised when a configuration does not fit its executable."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        self.message = message
        self.errors = errors or []
        super().__init__(self.message)


class ConfigurationBinder:
    """
    Validates configurations against executables.

    Rules:
    - Configuration and executable belong to the same scenario
    - Every parameter binding names a declared parameter, at most once
    - Every declared parameter is bound or has a default
    - Every declared input artifact is bound exactly once
    - Bound artifacts are registered, in the same scenario, and of the kind
      the executable annotates
    """

    def __init__(self):
        """Initialize binder."""
        self.logger = logging.getLogger(__name__)

    def validate(
        self,
        configuration: Configuration,
        executable: Executable,
        artifacts: Dict[str, Artifact],
    ) -> List[str]:
        """
        Validate a configuration.

        Args:
            configuration: Configuration to check
            executable: Executable it references
            artifacts: Registered artifacts by id

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if configuration.executable_id != executable.id:
            errors.append(
                f"Configuration references executable '{configuration.executable_id}', "
                f"not '{executable.id}'"
            )
        if configuration.scenario_id != executable.scenario_id:
            errors.append(
                f"Executable '{executable.id}' belongs to scenario "
                f"'{executable.scenario_id}', not '{configuration.scenario_id}'"
            )

        # Parameters
        bound_keys = [b.key for b in configuration.parameter_bindings]
        for key in sorted(set(k for k in bound_keys if bound_keys.count(k) > 1)):
            errors.append(f"Parameter '{key}' is bound more than once")
        for key in bound_keys:
            if executable.get_parameter(key) is None:
                errors.append(f"Unknown parameter '{key}'")
        for parameter in executable.parameters:
            if parameter.name not in bound_keys and parameter.default is None:
                errors.append(f"Parameter '{parameter.name}' has no value and no default")

        # Input artifacts
        artifact_keys = [b.key for b in configuration.input_artifact_bindings]
        for key in sorted(set(k for k in artifact_keys if artifact_keys.count(k) > 1)):
            errors.append(f"Input artifact '{key}' is bound more than once")
        for declared in executable.input_artifacts:
            if declared.name not in artifact_keys:
                errors.append(f"Input artifact '{declared.name}' is not bound")

        for binding in configuration.input_artifact_bindings:
            declared = executable.get_input_artifact(binding.key)
            if declared is None:
                errors.append(f"Unknown input artifact '{binding.key}'")
                continue
            artifact = artifacts.get(binding.artifact_id)
            if artifact is None:
                errors.append(
                    f"Artifact '{binding.artifact_id}' bound to '{binding.key}' is not registered"
                )
                continue
            if artifact.scenario_id != executable.scenario_id:
                errors.append(
                    f"Artifact '{artifact.id}' belongs to scenario '{artifact.scenario_id}'"
                )
            if declared.kind is not None and artifact.kind != declared.kind:
                errors.append(
                    f"Input artifact '{binding.key}' expects kind '{declared.kind.value}', "
                    f"artifact '{artifact.id}' is '{artifact.kind.value}'"
                )

        return errors

    def bind(
        self,
        configuration: Configuration,
        executable: Executable,
        artifacts: Dict[str, Artifact],
    ) -> None:
        """
        Validate a configuration and raise if any binding is invalid.

        Raises:
            BindingError: If the configuration does not satisfy the executable
        """
        errors = self.validate(configuration, executable, artifacts)
        if errors:
            raise BindingError(
                f"Configuration '{configuration.name}' does not satisfy "
                f"executable '{executable.id}'",
                errors=errors,
            )


class ExecutionPlanner:
    """
    Creates execution plans from bound configurations.

    Output artifacts of workflow executions land under
    ai://<output secret>/<execution id>/<output name>.
    """

    def __init__(self, binder: Optional[ConfigurationBinder] = None):
        """Initialize planner."""
        self.binder = binder or ConfigurationBinder()
        self.logger = logging.getLogger(__name__)

    def create_plan(
        self,
        execution_id: str,
        configuration: Configuration,
        executable: Executable,
        artifacts: Dict[str, Artifact],
        output_secret: str = "default",
    ) -> ExecutionPlan:
        """
        Create an execution plan.

        Args:
            execution_id: Execution or deployment id
            configuration: Configuration to run
            executable: Executable the configuration references
            artifacts: Registered artifacts by id
            output_secret: Object store secret outputs are written through

        Returns:
            ExecutionPlan with every placeholder resolved

        Raises:
            BindingError: If the configuration is invalid
        """
        self.binder.bind(configuration, executable, artifacts)

        parameters: Dict[str, str] = {
            p.name: p.default for p in executable.parameters if p.default is not None
        }
        for binding in configuration.parameter_bindings:
            parameters[binding.key] = binding.value

        inputs = []
        for binding in configuration.input_artifact_bindings:
            declared = executable.get_input_artifact(binding.key)
            artifact = artifacts[binding.artifact_id]
            inputs.append(
                ResolvedArtifact(
                    name=binding.key,
                    url=artifact.url,
                    path=declared.path,
                    artifact_id=artifact.id,
                    kind=artifact.kind,
                )
            )

        outputs = []
        for declared in executable.output_artifacts:
            name = declared.global_name or declared.name
            outputs.append(
                ResolvedArtifact(
                    name=name,
                    url=f"ai://{output_secret}/{execution_id}/{name}",
                    path=declared.path,
                    kind=declared.kind,
                    global_name=declared.global_name,
                )
            )

        artifact_urls = {a.name: a.url for a in inputs}
        container = self._substitute(executable.container, parameters, artifact_urls)

        plan = ExecutionPlan(
            execution_id=execution_id,
            executable_id=executable.id,
            kind=executable.kind,
            parameters=parameters,
            input_artifacts=inputs,
            output_artifacts=outputs,
            container=container,
            created_at=datetime.utcnow(),
        )

        self.logger.info(
            f"Created plan for {execution_id}: executable '{executable.id}', "
            f"{len(inputs)} input(s), {len(outputs)} output(s)"
        )
        return plan

    def _substitute(
        self,
        container: ContainerSpec,
        parameters: Dict[str, str],
        artifact_urls: Dict[str, str],
    ) -> ContainerSpec:
        """Replace placeholders in command, args and env."""

        def render(value: str) -> str:
            def replace(match) -> str:
                scope, name = match.group(1), match.group(2)
                if scope.endswith("artifacts"):
                    return artifact_urls.get(name, match.group(0))
                return parameters.get(name, match.group(0))

            return PLACEHOLDER_PATTERN.sub(replace, value)

        return ContainerSpec(
            image=container.image,
            command=[render(c) for c in container.command],
            args=[render(a) for a in container.args],
            env={k: render(v) for k, v in container.env.items()},
            port=container.port,
        )


# Singleton instance
planner = ExecutionPlanner()


def get_planner() -> ExecutionPlanner:
    """Get planner instance."""
    return planner
