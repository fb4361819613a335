"""
Error taxonomy for the orchestration engine.

Fatal (halt the run, surface to the caller of start()):
- ConfigurationError: dangling dependency, missing collaborator, no scope
- DeadlockError: no ready steps while incomplete steps remain
- IterationCapExceeded: the graph is alive but did not finish within the cap

Isolated (logged, never abort siblings or the loop):
- StepExecutionError, ExecutorError, PersistError

Downgraded to safe defaults inside the lenient decoders:
- QualityParseError, SynthesisParseError
"""

from typing import List, Optional


class OrchestrationError(Exception):
    """Base class for all orchestration errors."""


class ConfigurationError(OrchestrationError):
    """Invalid workflow configuration, detected before the run starts."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = list(problems or [])
        if self.problems:
            message = message + "\n" + "\n".join(self.problems)
        super().__init__(message)


class DeadlockError(OrchestrationError):
    """No step can proceed but incomplete steps remain."""

    def __init__(self, stuck_steps: List[str], iteration: int = 0):
        self.stuck_steps = list(stuck_steps)
        self.iteration = iteration
        super().__init__(
            "Deadlock detected: Steps cannot proceed due to unmet dependencies: "
            + ", ".join(self.stuck_steps)
        )


class IterationCapExceeded(OrchestrationError):
    """The iteration safety limit was reached before the graph completed."""

    def __init__(self, iterations: int):
        self.iterations = iterations
        super().__init__(
            f"Maximum iterations reached ({iterations}). "
            "Automation stopped to prevent infinite loop."
        )


class StepExecutionError(OrchestrationError):
    """A single step's attempt failed outright (not a low quality score)."""

    def __init__(self, step_id: str, message: str):
        self.step_id = step_id
        super().__init__(message)


class ExecutorError(OrchestrationError):
    """The agent executor could not produce a response."""


class PersistError(OrchestrationError):
    """Output persistence failed."""


class QualityParseError(ValueError):
    """A quality evaluation response could not be decoded."""


class SynthesisParseError(ValueError):
    """A synthesis response could not be decoded."""
