"""
AI Core Lab - Engine Package

Lifecycle engine behind the emulator:
- Parser: Validates executable templates and turns them into Executables
- Planner: Binds configurations to executables and resolves execution plans
- Executor: Runs workflow plans and brings serving plans up
"""

from aicore_lab.engine.parser import ExecutableParser, ParserError
from aicore_lab.engine.planner import BindingError, ConfigurationBinder, ExecutionPlanner
from aicore_lab.engine.executor import ExecutionError, LocalDeployer, LocalExecutor

__all__ = [
    "ExecutableParser",
    "ParserError",
    "BindingError",
    "ConfigurationBinder",
    "ExecutionPlanner",
    "ExecutionError",
    "LocalDeployer",
    "LocalExecutor",
]
