"""
AI Core Lab - Training Plugin

Runs the house-price training step of a workflow execution in process.
"""

from __future__ import annotations
from pathlib import Path
from typing import List, Optional

from aicore_lab.config import get_settings
from aicore_lab.plugins.base import Plugin, PluginContext, PluginRegistry, StepResult
from aicore_lab.training import TrainingError, run_training


class TrainingPlugin(Plugin):
    """
    Plugin for the decision tree training container.

    Reads train.csv from the single staged input artifact, writes model.pkl
    and metrics.json into the first output artifact directory. DT_MAX_DEPTH
    comes from the container env or the bound parameters.
    """

    PLUGIN_NAME = "training"
    PLUGIN_SCRIPTS = ("train.py", "main.py")

    def _max_depth(self, context: PluginContext) -> Optional[int]:
        value = context.value("DT_MAX_DEPTH")
        return None if value is None else int(value)

    def _data_file(self, context: PluginContext) -> Path:
        staged = Path(next(iter(context.inputs.values())))
        if staged.is_dir():
            return staged / Path(get_settings().TRAINING_DATA_PATH).name
        return staged

    def validate(self, context: PluginContext) -> List[str]:
        errors = []

        if len(context.inputs) != 1:
            errors.append(
                f"Training needs exactly one input dataset, got {len(context.inputs)}"
            )
        if not context.outputs:
            errors.append("Training needs an output artifact for the model")

        value = context.value("DT_MAX_DEPTH")
        if value is not None:
            try:
                if int(value) < 1:
                    errors.append("DT_MAX_DEPTH must be a positive integer")
            except ValueError:
                errors.append(f"DT_MAX_DEPTH must be an integer, got '{value}'")

        return errors

    def execute(self, context: PluginContext) -> StepResult:
        data_file = self._data_file(context)
        output_dir = next(iter(context.outputs.values()))
        context.log_info(f"Training on {data_file.name}")

        try:
            report = run_training(
                data_path=str(data_file),
                output_dir=output_dir,
                max_depth=self._max_depth(context),
            )
        except TrainingError as e:
            context.log_error(e.message)
            details = f": {'; '.join(e.errors)}" if e.errors else ""
            return StepResult(success=False, message=f"{e.message}{details}")

        context.log_info(f"Model written with R2={report.r2:.4f}")
        return StepResult(
            success=True,
            message="Training completed",
            metrics=report.model_dump(mode="json"),
        )


# Register plugin
PluginRegistry.register(TrainingPlugin)
