"""
Scheduler: readiness and liveness queries over a StepGraph.

A step is ready when it is not Complete/Skipped and every dependency is
Complete. When nothing is ready, the graph is either finished or stuck.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List

from orchestrator.graph import Step, StepGraph, StepStatus


class LivenessState(str, Enum):
    CONTINUE = "continue"
    COMPLETE = "complete"
    DEADLOCK = "deadlock"


@dataclass
class Liveness:
    state: LivenessState
    stuck_steps: List[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.state == LivenessState.DEADLOCK:
            return ("Deadlock detected: Steps cannot proceed due to unmet dependencies: "
                    + ", ".join(self.stuck_steps))
        return ""


def is_ready(graph: StepGraph, step: Step) -> bool:
    if step.is_finished:
        return False
    for dep_id in step.dependencies:
        dep = graph.get(dep_id)
        if dep is None or dep.status != StepStatus.COMPLETE:
            return False
    return True


def compute_ready(graph: StepGraph) -> List[Step]:
    """Ready steps in insertion order."""
    return [step for step in graph if is_ready(graph, step)]


def check_liveness(graph: StepGraph, ready_steps: List[Step]) -> Liveness:
    if ready_steps:
        return Liveness(LivenessState.CONTINUE)

    incomplete = graph.incomplete()
    if not incomplete:
        return Liveness(LivenessState.COMPLETE)

    return Liveness(LivenessState.DEADLOCK, [s.display_name for s in incomplete])
