"""
AI Core Lab - Base Step Plugin Interface

Workflow containers cannot run locally, so the executor hands each workflow
to the plugin registered for the script its container launches.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Type
import logging
import re

logger = logging.getLogger(__name__)

SCRIPT_PATTERN = re.compile(r"([\w\-]+\.py)\b")


@dataclass
class PluginContext:
    """
    Execution context passed to plugins.

    Container paths from the template are mapped to directories inside the
    execution workspace:
    - inputs: input artifact name -> staged local path
    - outputs: output artifact name -> local directory to fill
    """
    execution_id: str
    workspace: str
    parameters: Dict[str, str] = field(default_factory=dict)
    env: Dict[str, str] = field(default_factory=dict)
    inputs: Dict[str, str] = field(default_factory=dict)
    outputs: Dict[str, str] = field(default_factory=dict)
    logs: List[Dict[str, Any]] = field(default_factory=list)

    def log_info(self, message: str) -> None:
        self._log("INFO", message)

    def log_error(self, message: str) -> None:
        self._log("ERROR", message)

    def _log(self, level: str, message: str) -> None:
        self.logs.append({
            "timestamp": datetime.utcnow().isoformat(),
            "level": level,
            "execution_id": self.execution_id,
            "message": message,
        })

    def value(self, name: str) -> Optional[str]:
        """Look a setting up in the container env, then the parameters."""
        if self.env.get(name) not in (None, ""):
            return self.env[name]
        return self.parameters.get(name) or None


@dataclass
class StepResult:
    """Outcome of one plugin run."""
    success: bool
    message: str = ""
    metrics: Dict[str, Any] = field(default_factory=dict)


class Plugin(ABC):
    """
    Abstract base class for workflow step plugins.

    Each plugin:
    - Declares the container scripts it stands in for
    - Validates the context before running
    - Fills the output directories and returns metrics
    """

    # Plugin metadata (override in subclasses)
    PLUGIN_NAME: str = "base"
    PLUGIN_SCRIPTS: tuple = ()

    def __init__(self):
        """Initialize plugin."""
        self.logger = logging.getLogger(f"plugin.{self.PLUGIN_NAME}")

    @abstractmethod
    def validate(self, context: PluginContext) -> List[str]:
        """
        Validate the execution context.

        Returns:
            List of validation errors (empty if valid)
        """
        pass

    @abstractmethod
    def execute(self, context: PluginContext) -> StepResult:
        """
        Run the step.

        Args:
            context: Execution context with staged paths and parameters

        Returns:
            StepResult with status and metrics
        """
        pass


class PluginRegistry:
    """
    Registry for managing available plugins.

    Usage:
        PluginRegistry.register(TrainingPlugin)
        plugin = PluginRegistry.get_for_command(["/bin/sh", "-c"], ["python /app/src/train.py"])
    """

    _plugins: Dict[str, Type[Plugin]] = {}

    @classmethod
    def register(cls, plugin_class: Type[Plugin]) -> None:
        """Register a plugin class."""
        cls._plugins[plugin_class.PLUGIN_NAME] = plugin_class
        logger.info(f"Registered plugin: {plugin_class.PLUGIN_NAME}")

    @classmethod
    def get(cls, name: str) -> Optional[Plugin]:
        """Get plugin instance by name."""
        plugin_class = cls._plugins.get(name)
        if plugin_class:
            return plugin_class()
        return None

    @classmethod
    def get_for_command(
        cls,
        command: Iterable[str],
        args: Iterable[str] = (),
    ) -> Optional[Plugin]:
        """Get plugin instance for the script a container command runs."""
        scripts = SCRIPT_PATTERN.findall(" ".join(list(command) + list(args)))
        for script in scripts:
            for plugin_class in cls._plugins.values():
                if script in plugin_class.PLUGIN_SCRIPTS:
                    return plugin_class()
        return None

    @classmethod
    def available(cls) -> List[str]:
        """Get list of available plugin names."""
        return list(cls._plugins.keys())
