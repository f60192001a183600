"""taskforge - drive a coding agent from a task description to a pull request."""

from importlib.metadata import PackageNotFoundError, version

from taskforge.schemas import ControllerResult, PhaseResult, Task

__all__ = ["ControllerResult", "PhaseResult", "Task"]

try:
    __version__ = version("taskforge")
except PackageNotFoundError:
    __version__ = "0.0.0"
