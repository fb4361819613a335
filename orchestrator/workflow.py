"""
Orchestration Loop using LangGraph.

Each iteration is one pass through:
SCHEDULE → EXECUTE (parallel, quality-gated) → SYNTHESIZE (+ refinement) → CHECKPOINT

Features:
- Dependency-gated readiness, deadlock detection within one iteration
- Barrier-synchronized parallel batches with per-step failure isolation
- Bounded quality retries per step
- Cross-step synthesis and a single refinement pass
- Cooperative stop and an iteration safety cap (default 50)
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, TypedDict
from langgraph.graph import StateGraph, END

from agents.base import PipelineConfig
from agents.critic import CriticAgent
from agents.executor import AgentExecutor
from agents.synthesizer import SynthesisResult, SynthesizerAgent
from agents.writer import StepWriter
from orchestrator.collaborators import FileOutputPersistence, InMemoryProjectStore
from orchestrator.discussions import DiscussionBoard
from orchestrator.errors import ConfigurationError, DeadlockError, IterationCapExceeded
from orchestrator.graph import StepStatus, WorkflowProject
from orchestrator.parallel import ParallelExecutor, StepResult
from orchestrator.quality_gate import ActiveAgent, QualityGate
from orchestrator.scheduler import LivenessState, check_liveness, compute_ready
from orchestrator.synthesis import SynthesisCoordinator
from utils.run_logger import IterationLog, RunLogger


class LoopState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    DEADLOCKED = "deadlocked"
    STOPPED = "stopped"
    ITERATION_CAP_EXCEEDED = "iteration_cap_exceeded"
    FAILED = "failed"


# --- State Definition ---

class IterationState(TypedDict):
    """State carried between the nodes of the iteration graph."""
    iteration: int
    ready: List[str]  # Step ids, insertion order
    results: List[StepResult]
    synthesis: Optional[SynthesisResult]
    outcome: str  # "" while running, else completed / deadlocked / stopped / iteration_cap
    stuck_steps: List[str]


@dataclass
class RunReport:
    """Summary returned by a run that completed or was stopped."""
    workflow_id: str
    state: LoopState
    iterations: int
    completed_steps: List[str] = field(default_factory=list)
    incomplete_steps: List[str] = field(default_factory=list)
    stats: Dict = field(default_factory=dict)

    def to_dict(self) -> Dict:
        return {
            "workflow_id": self.workflow_id,
            "state": self.state.value,
            "iterations": self.iterations,
            "completed_steps": list(self.completed_steps),
            "incomplete_steps": list(self.incomplete_steps),
            "stats": dict(self.stats)
        }


class OrchestrationLoop:
    """
    Multi-agent step pipeline orchestrator.

    Coordinates:
    - Scheduler: ready set + liveness per iteration
    - ParallelExecutor: concurrent batch with failure isolation
    - QualityGate (StepWriter + CriticAgent): attempt/score/retry per step
    - SynthesisCoordinator (SynthesizerAgent): batch reconciliation + refinement

    Live run state (active agents, discussions, events) belongs to this
    instance and is reset at every start().
    """

    def __init__(self, executor: AgentExecutor, prompt_assembly=None, project_store=None,
                 config: PipelineConfig = None, persistence=None, reference_library=None,
                 run_logger: RunLogger = None):
        self.config = config or PipelineConfig()
        self.executor = executor
        self.prompt_assembly = prompt_assembly
        self.project_store = project_store or InMemoryProjectStore()
        self.persistence = persistence
        self.run_logger = run_logger or RunLogger(
            event_limit=self.config.event_history_limit,
            trace_limit=self.config.context_trace_limit,
            echo=self.config.enable_detailed_logging
        )

        self.state = LoopState.IDLE
        self.current_iteration = 0
        self.current_project: Optional[WorkflowProject] = None
        self.active_agents: Dict[str, ActiveAgent] = {}
        self.discussions = DiscussionBoard()
        self._running = False
        self._stop_requested = False
        self._iteration_started = 0.0

        # Initialize agents
        self.writer = StepWriter(
            executor, prompt_assembly, self.config,
            reference_library=reference_library,
            discussions=self.discussions,
            run_logger=self.run_logger
        )
        self.critic = CriticAgent(executor, self.config)
        self.synthesizer = SynthesizerAgent(executor, self.config)

        # Per-run components, built in start()
        self.quality_gate: Optional[QualityGate] = None
        self.parallel: Optional[ParallelExecutor] = None
        self.coordinator: Optional[SynthesisCoordinator] = None

        # Build graph
        self.graph = self._build_graph()

    # --- Control surface ---

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def execution_history(self) -> list:
        return list(self.run_logger.events)

    def subscribe(self, callback):
        """Register an observer for execution events."""
        self.run_logger.subscribe(callback)

    def stop(self):
        """Request a cooperative stop at the next iteration boundary."""
        if self._running:
            self._stop_requested = True
            self.run_logger.log("Stopping execution...")

    def start(self, workflow_id: str, initial_input: Optional[str] = None) -> Optional[RunReport]:
        """
        Run a workflow to completion.

        Returns:
            RunReport when the graph completed or the run was stopped;
            None when another run is already in progress.

        Raises:
            ConfigurationError: before running, for an invalid workflow.
            DeadlockError: no step can proceed but incomplete steps remain.
            IterationCapExceeded: the iteration cap was reached.
        """
        if self._running:
            print("[ORCHESTRATOR] Multi-agent automation already running")
            return None

        project = self.project_store.get_project(workflow_id)
        if project is None:
            raise ConfigurationError(f"Project not found: {workflow_id}")
        self.validate(project)

        self._reset(project)
        self._running = True
        self.state = LoopState.RUNNING

        print("\n" + "#" * 60)
        print("# MULTI-AGENT STEP PIPELINE")
        print("#" * 60)
        print(f"Workflow: {project.name or project.id}")
        print(f"Steps: {len(project.graph)}")
        print(f"Max iterations: {self.config.max_iterations}")

        try:
            if initial_input:
                self._initialize_first_step(project, initial_input)

            initial_state: IterationState = {
                "iteration": 0,
                "ready": [],
                "results": [],
                "synthesis": None,
                "outcome": "",
                "stuck_steps": []
            }
            max_iterations = max(1, self.config.max_iterations)
            final_state = self.graph.invoke(
                initial_state,
                config={"recursion_limit": max_iterations * 4 + 5}
            )
            return self._finish(project, final_state)

        except Exception:
            if self.state == LoopState.RUNNING:
                self.state = LoopState.FAILED
            raise
        finally:
            self._running = False
            self.active_agents.clear()

    # --- Setup ---

    def validate(self, project: WorkflowProject):
        """Pre-run checks; every failure is a ConfigurationError."""
        project.graph.ensure_valid()

        if self.prompt_assembly is None:
            raise ConfigurationError("Prompt assembly not available")

        if not project.scope_context(self.config.default_scope_directory):
            raise ConfigurationError("Scope directory not set for this project")

    def _reset(self, project: WorkflowProject):
        self.current_project = project
        self.current_iteration = 0
        self._stop_requested = False
        self.active_agents.clear()
        self.discussions.clear()
        self.run_logger.reset()
        self.run_logger.set_config({
            "workflow_id": project.id,
            "quality_threshold": self.config.quality_threshold,
            "max_quality_retries": self.config.max_quality_retries,
            "max_iterations": self.config.max_iterations,
            "use_conversation_memory": project.use_conversation_memory
        })

        persistence = self.persistence
        if persistence is None and project.output_directory:
            persistence = FileOutputPersistence(project.output_directory, project)

        self.quality_gate = QualityGate(
            self.writer, self.critic, self.config,
            persistence=persistence,
            run_logger=self.run_logger,
            active_agents=self.active_agents
        )
        self.parallel = ParallelExecutor(
            lambda step: self.quality_gate.run(project, step, self.current_iteration),
            max_workers=self.config.max_parallel_steps,
            run_logger=self.run_logger
        )
        self.coordinator = SynthesisCoordinator(
            self.synthesizer, self.writer, self.config,
            persist=self.quality_gate.persist,
            run_logger=self.run_logger,
            discussions=self.discussions
        )

    def _initialize_first_step(self, project: WorkflowProject, initial_input: str):
        """Give the first incomplete step the initial input, if it has none."""
        first_incomplete = next((s for s in project.graph if not s.is_finished), None)
        if first_incomplete is not None and not first_incomplete.input.strip():
            first_incomplete.input = initial_input
            self.run_logger.log(
                f'Initialized first step "{first_incomplete.display_name}" with initial input'
            )

    # --- Graph ---

    def _build_graph(self):
        """Build the LangGraph iteration loop."""

        workflow = StateGraph(IterationState)

        # Add nodes
        workflow.add_node("schedule", self._schedule)
        workflow.add_node("execute", self._execute)
        workflow.add_node("synthesize", self._synthesize)
        workflow.add_node("checkpoint", self._checkpoint)

        # Define edges
        workflow.set_entry_point("schedule")
        workflow.add_conditional_edges(
            "schedule",
            self._route_after_schedule,
            {
                "execute": "execute",
                "done": END
            }
        )
        workflow.add_edge("execute", "synthesize")
        workflow.add_edge("synthesize", "checkpoint")
        workflow.add_conditional_edges(
            "checkpoint",
            self._route_after_checkpoint,
            {
                "continue": "schedule",
                "done": END
            }
        )

        return workflow.compile()

    def _schedule(self, state: IterationState) -> Dict:
        """Start an iteration: compute the ready set and check liveness."""
        project = self.current_project
        iteration = state["iteration"] + 1
        self.current_iteration = iteration
        self._iteration_started = time.time()

        ready = compute_ready(project.graph)
        self.run_logger.add_event(iteration, "iteration_start", {
            "iteration": iteration,
            "ready_steps": [s.display_name for s in ready]
        })

        liveness = check_liveness(project.graph, ready)
        if liveness.state == LivenessState.COMPLETE:
            return {"iteration": iteration, "ready": [], "outcome": "completed"}
        if liveness.state == LivenessState.DEADLOCK:
            self.run_logger.log(liveness.message)
            return {
                "iteration": iteration,
                "ready": [],
                "outcome": "deadlocked",
                "stuck_steps": liveness.stuck_steps
            }

        print("\n" + "=" * 60)
        print(f"ITERATION {iteration}: {len(ready)} ready step(s)")
        print("=" * 60)
        return {"iteration": iteration, "ready": [s.id for s in ready], "outcome": ""}

    def _route_after_schedule(self, state: IterationState) -> str:
        return "done" if state["outcome"] else "execute"

    def _execute(self, state: IterationState) -> Dict:
        """Run every ready step concurrently through the quality gate."""
        project = self.current_project
        iteration = state["iteration"]
        steps = [project.graph[step_id] for step_id in state["ready"]]

        self.run_logger.log(f"Executing {len(steps)} step(s) in parallel (iteration {iteration})...")
        self.run_logger.add_event(iteration, "parallel_start", {
            "iteration": iteration,
            "steps": [s.display_name for s in steps]
        })

        results = self.parallel.run(steps)

        self.run_logger.add_event(iteration, "parallel_complete", {
            "iteration": iteration,
            "results": [{"step": r.step.display_name, "success": r.success} for r in results]
        })
        return {"results": results}

    def _synthesize(self, state: IterationState) -> Dict:
        """Synthesis and refinement over the batch's successes."""
        project = self.current_project
        iteration = state["iteration"]
        results = state["results"]

        synthesis = None
        refined: List[str] = []
        ran = SynthesisCoordinator.should_synthesize(results)

        if ran:
            self.run_logger.add_event(iteration, "synthesis_start", {"iteration": iteration})
            synthesis = self.coordinator.synthesize(project, results)

            if synthesis is not None:
                self.run_logger.add_event(iteration, "synthesis_complete", {
                    "iteration": iteration,
                    "conflicts": len(synthesis.conflicts),
                    "improvements": len(synthesis.improvements)
                })
                self.coordinator.resolve_conflicts(project, synthesis)
                refined = self.coordinator.refine(project, results, synthesis)

        self.run_logger.log_iteration(IterationLog(
            iteration=iteration,
            ready_steps=[r.step.display_name for r in results],
            succeeded=[r.step.display_name for r in results if r.success],
            failed=[r.step.display_name for r in results if not r.success],
            synthesis_ran=ran,
            refined=refined,
            duration_seconds=time.time() - self._iteration_started,
            results=[r.to_dict() for r in results],
            synthesis=synthesis.to_dict() if synthesis is not None else None
        ))
        return {"synthesis": synthesis}

    def _checkpoint(self, state: IterationState) -> Dict:
        """Iteration boundary: cooperative stop, then the iteration cap."""
        if self._stop_requested:
            return {"outcome": "stopped"}
        if state["iteration"] >= self.config.max_iterations:
            return {"outcome": "iteration_cap"}
        return {"outcome": ""}

    def _route_after_checkpoint(self, state: IterationState) -> str:
        return "done" if state["outcome"] else "continue"

    # --- Finish ---

    def _finish(self, project: WorkflowProject, final_state: Dict) -> RunReport:
        outcome = final_state.get("outcome", "")
        iterations = final_state.get("iteration", self.current_iteration)

        if outcome == "deadlocked":
            self.state = LoopState.DEADLOCKED
            raise DeadlockError(final_state.get("stuck_steps", []), iterations)

        if outcome == "iteration_cap":
            self.state = LoopState.ITERATION_CAP_EXCEEDED
            self.run_logger.log(f"Maximum iterations reached ({iterations})")
            raise IterationCapExceeded(iterations)

        if outcome == "stopped":
            self.state = LoopState.STOPPED
            self.run_logger.log(f"Stopped after iteration {iterations}")
        else:
            self.state = LoopState.COMPLETED
            self.run_logger.log("All steps completed successfully!")

        report = RunReport(
            workflow_id=project.id,
            state=self.state,
            iterations=iterations,
            completed_steps=[s.display_name for s in project.graph if s.status == StepStatus.COMPLETE],
            incomplete_steps=[s.display_name for s in project.graph.incomplete()],
            stats=self.run_logger.calculate_summary_stats()
        )
        self.run_logger.set_report(report.to_dict())

        print("\n" + "#" * 60)
        print(f"# WORKFLOW {self.state.value.upper()}")
        print("#" * 60)
        return report


# --- Convenience function ---

def run_pipeline(project: WorkflowProject,
                 executor: AgentExecutor,
                 prompt_assembly,
                 initial_input: Optional[str] = None,
                 config: PipelineConfig = None,
                 persistence=None,
                 reference_library=None) -> RunReport:
    """
    Convenience function to run one workflow project.

    Args:
        project: WorkflowProject with its step graph
        executor: Agent executor for every agent call
        prompt_assembly: Base prompt provider
        initial_input: Optional input for the first incomplete step
        config: PipelineConfig object

    Returns:
        RunReport for the finished run
    """
    loop = OrchestrationLoop(
        executor,
        prompt_assembly=prompt_assembly,
        project_store=InMemoryProjectStore([project]),
        config=config,
        persistence=persistence,
        reference_library=reference_library
    )
    return loop.start(project.id, initial_input)
