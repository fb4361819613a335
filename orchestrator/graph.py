"""
Step graph: step records, dependency edges and the workflow project record.

The graph is pure data. Readiness decisions live in orchestrator.scheduler;
mutation happens only through the loop, the quality gate and the synthesis
coordinator during a run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from orchestrator.errors import ConfigurationError


class StepStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETE = "complete"
    SKIPPED = "skipped"
    NEEDS_REVISION = "needs_revision"


FINISHED_STATUSES = (StepStatus.COMPLETE, StepStatus.SKIPPED)


@dataclass
class Step:
    """One schedulable unit of generative work."""
    id: str
    name: str = ""
    dependencies: List[str] = field(default_factory=list)
    status: StepStatus = StepStatus.NOT_STARTED
    input: str = ""
    output: str = ""
    step_type: str = ""
    retry_count: int = 0
    last_quality_score: Optional[Any] = None  # QualityScore from agents.critic

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED_STATUSES

    @classmethod
    def from_dict(cls, data: Dict) -> "Step":
        if not isinstance(data, dict) or not data.get('id'):
            raise ConfigurationError(f"Step record has no id: {data!r}")
        step_id = data['id']
        status = data.get('status') or StepStatus.NOT_STARTED
        try:
            status = StepStatus(status)
        except (TypeError, ValueError):
            raise ConfigurationError(f'Step "{step_id}" has unknown status: {status}') from None
        return cls(
            id=step_id,
            name=data.get('name', ''),
            dependencies=list(data.get('dependencies') or []),
            status=status,
            input=data.get('input', '') or '',
            output=data.get('output', '') or '',
            step_type=data.get('step_type', '') or '',
        )

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "dependencies": list(self.dependencies),
            "status": self.status.value,
            "input": self.input,
            "output": self.output,
            "step_type": self.step_type,
            "retry_count": self.retry_count,
        }


class StepGraph:
    """
    Ordered collection of steps.

    Insertion order is preserved and drives readiness enumeration. Cycles are
    allowed here; they surface at runtime as a deadlock.
    """

    def __init__(self, steps: Optional[List[Step]] = None):
        self._steps: Dict[str, Step] = {}
        for step in steps or []:
            self.add(step)

    def add(self, step: Step) -> Step:
        if step.id in self._steps:
            raise ConfigurationError(f"Duplicate step id: {step.id}")
        self._steps[step.id] = step
        return step

    def get(self, step_id: str) -> Optional[Step]:
        return self._steps.get(step_id)

    def __getitem__(self, step_id: str) -> Step:
        return self._steps[step_id]

    def __contains__(self, step_id: str) -> bool:
        return step_id in self._steps

    def __iter__(self) -> Iterator[Step]:
        return iter(list(self._steps.values()))

    def __len__(self) -> int:
        return len(self._steps)

    @property
    def steps(self) -> List[Step]:
        return list(self._steps.values())

    def index_of(self, step_id: str) -> int:
        for i, step_key in enumerate(self._steps):
            if step_key == step_id:
                return i
        return -1

    def dependencies_of(self, step: Step) -> List[Step]:
        """Resolved dependency steps, in declaration order; unknown ids are skipped."""
        return [self._steps[d] for d in step.dependencies if d in self._steps]

    def incomplete(self) -> List[Step]:
        return [s for s in self._steps.values() if not s.is_finished]

    def validate(self) -> List[str]:
        """Return a description of every dependency that does not resolve."""
        problems = []
        for step in self._steps.values():
            for dep_id in step.dependencies:
                if dep_id not in self._steps:
                    problems.append(
                        f'Step "{step.display_name}" depends on missing step: {dep_id}'
                    )
        return problems

    def ensure_valid(self):
        problems = self.validate()
        if problems:
            raise ConfigurationError("Some steps have missing dependencies", problems)

    @classmethod
    def from_dicts(cls, records: List[Dict], validate: bool = True) -> "StepGraph":
        graph = cls(Step.from_dict(r) for r in records)
        if validate:
            graph.ensure_valid()
        return graph

    def to_dicts(self) -> List[Dict]:
        return [s.to_dict() for s in self._steps.values()]


@dataclass
class WorkflowProject:
    """A workflow run's project record: the graph plus workflow-level options."""
    id: str
    graph: StepGraph
    name: str = ""
    scope_directory: str = ""
    output_directory: str = ""
    use_conversation_memory: bool = True
    metadata: Dict = field(default_factory=dict)

    def scope_context(self, default: str = "") -> str:
        """The opaque scope handle passed to the agent executor."""
        return (self.scope_directory or default or "").strip()

    @classmethod
    def from_dict(cls, data: Dict) -> "WorkflowProject":
        if not isinstance(data, dict) or not data.get('id'):
            raise ConfigurationError("Workflow has no id")
        return cls(
            id=data['id'],
            name=data.get('name', ''),
            graph=StepGraph.from_dicts(data.get('steps', [])),
            scope_directory=data.get('scope_directory', '') or '',
            output_directory=data.get('output_directory', '') or '',
            use_conversation_memory=data.get('use_conversation_memory', True) is not False,
            metadata=dict(data.get('metadata') or {}),
        )
