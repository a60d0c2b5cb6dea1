"""
AI Core Lab - Plugins Package

Step plugins that stand in for workflow containers during local executions.
"""

from aicore_lab.plugins.base import Plugin, PluginContext, PluginRegistry, StepResult
from aicore_lab.plugins.training import TrainingPlugin

__all__ = [
    "Plugin",
    "PluginContext",
    "PluginRegistry",
    "StepResult",
    "TrainingPlugin",
]
