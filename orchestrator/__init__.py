"""
Orchestrator: dependency-gated, quality-checked step pipeline.

Each iteration:
1. Scheduler → Ready steps (all dependencies complete)
2. ParallelExecutor → Run every ready step concurrently
3. QualityGate → Execute, score, refine (max 2 retries) per step
4. SynthesisCoordinator → Cross-step analysis + refinement pass
5. Checkpoint → Stop flag / iteration cap, then loop

The LangGraph loop lives in orchestrator.workflow (OrchestrationLoop,
run_pipeline); it is not imported here because the agents package
depends on the data model and errors exported below.
"""

from orchestrator.errors import (
    OrchestrationError,
    ConfigurationError,
    DeadlockError,
    IterationCapExceeded,
    StepExecutionError,
    ExecutorError,
    PersistError
)
from orchestrator.graph import Step, StepGraph, StepStatus, WorkflowProject
from orchestrator.scheduler import compute_ready, check_liveness, Liveness, LivenessState

__all__ = [
    'OrchestrationError', 'ConfigurationError', 'DeadlockError', 'IterationCapExceeded',
    'StepExecutionError', 'ExecutorError', 'PersistError',
    'Step', 'StepGraph', 'StepStatus', 'WorkflowProject',
    'compute_ready', 'check_liveness', 'Liveness', 'LivenessState'
]
