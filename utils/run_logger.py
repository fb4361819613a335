"""
Run Logging System for the step pipeline.

Captures what happens during an orchestration run:
- Execution events (iteration_start, parallel_start, parallel_complete,
  synthesis_start, synthesis_complete) in a capped ring buffer
- Activity feed (one line per notable action, mirrored to the console)
- Context traces (context building, prompt enhancement, quality evaluation)
- Every quality-gate attempt with its score
- Per-iteration summaries with step results and the synthesis verdict
- The final run report

Subscribers receive each execution event synchronously. The engine never
reads any of this back; a run behaves the same with no subscribers.
"""

import json
import os
import time
from collections import deque
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from dataclasses import dataclass, field, asdict

import numpy as np


EVENT_TYPES = (
    "iteration_start",
    "parallel_start",
    "parallel_complete",
    "synthesis_start",
    "synthesis_complete",
)


@dataclass
class ExecutionEvent:
    """One observable moment of a run."""
    iteration: int
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class ContextTrace:
    """Log of one context-building / prompt-enhancement / evaluation action."""
    step: str
    type: str  # context_building, prompt_enhancement, quality_evaluation
    context_sources: List[str] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class AttemptLog:
    """Log of one quality-gate attempt (execute -> score -> decision)."""
    iteration: int
    step_id: str
    attempt: int
    score: float
    feedback: str
    issues: List[str]
    accepted: bool
    output_chars: int
    duration_seconds: float

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class IterationLog:
    """Summary of one iteration."""
    iteration: int
    ready_steps: List[str]
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    synthesis_ran: bool = False
    refined: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0
    results: List[Dict] = field(default_factory=list)  # StepResult.to_dict()
    synthesis: Optional[Dict] = None  # SynthesisResult.to_dict()

    def to_dict(self) -> Dict:
        return asdict(self)


class RunLogger:
    """
    Structured logger for one orchestrator instance.

    Key features:
    - Ring buffers for events and context traces
    - Activity feed mirrored to the console with a component tag
    - Attempt and iteration records for post-run analysis
    - Summary statistics and JSON export
    """

    def __init__(self, experiment_name: str = "pipeline_run", log_dir: str = "logs",
                 event_limit: int = 100, trace_limit: int = 50, echo: bool = True):
        self.experiment_name = experiment_name
        self.log_dir = log_dir
        self.echo = echo
        self.timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

        self.events: deque = deque(maxlen=event_limit)
        self.context_traces: deque = deque(maxlen=trace_limit)
        self.activity: List[str] = []
        self.attempts: List[AttemptLog] = []
        self.iterations: List[IterationLog] = []
        self._subscribers: List[Callable[[ExecutionEvent], None]] = []

        self.metadata = {
            'experiment_name': experiment_name,
            'start_time': datetime.now().isoformat(),
            'config': {},
            'summary_stats': {}
        }

    def reset(self):
        """Clear run data; subscribers stay attached."""
        self.events.clear()
        self.context_traces.clear()
        self.activity = []
        self.attempts = []
        self.iterations = []
        self.metadata['start_time'] = datetime.now().isoformat()
        self.metadata['summary_stats'] = {}
        self.metadata.pop('report', None)

    def set_config(self, config: Dict):
        """Store run configuration."""
        self.metadata['config'] = config

    def set_report(self, report: Dict):
        """Store the final run report."""
        self.metadata['report'] = report

    # --- Observers ---

    def subscribe(self, callback: Callable[[ExecutionEvent], None]):
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[ExecutionEvent], None]):
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def add_event(self, iteration: int, event_type: str, payload: Dict = None) -> ExecutionEvent:
        event = ExecutionEvent(iteration=iteration, type=event_type, payload=payload or {})
        self.events.append(event)

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                print(f"[RUN_LOGGER] Subscriber error on {event_type}: {e}")

        return event

    # --- Activity feed ---

    def log(self, message: str, tag: str = "ORCHESTRATOR"):
        entry = f"[{datetime.now().strftime('%H:%M:%S')}] {message}"
        self.activity.append(entry)
        if self.echo:
            print(f"[{tag}] {message}")

    def add_context_trace(self, step: str, trace_type: str, sources: List[str] = None):
        self.context_traces.append(ContextTrace(step=step, type=trace_type, context_sources=sources or []))

    def log_attempt(self, iteration: int, step_id: str, attempt: int, quality,
                    accepted: bool, output: str, duration: float) -> AttemptLog:
        record = AttemptLog(
            iteration=iteration,
            step_id=step_id,
            attempt=attempt,
            score=quality.score,
            feedback=quality.feedback,
            issues=list(quality.issues),
            accepted=accepted,
            output_chars=len(output or ""),
            duration_seconds=duration
        )
        self.attempts.append(record)
        return record

    def log_iteration(self, record: IterationLog):
        self.iterations.append(record)

    # --- Summary & export ---

    def accepted_scores(self) -> List[float]:
        return [a.score for a in self.attempts if a.accepted]

    def calculate_summary_stats(self) -> Dict:
        """Calculate summary statistics across the run."""
        accepted = self.accepted_scores()
        all_scores = [a.score for a in self.attempts]
        retries = sum(1 for a in self.attempts if a.attempt > 1)

        stats = {
            'iterations': len(self.iterations),
            'total_attempts': len(self.attempts),
            'retry_attempts': retries,
            'accepted_steps': len(accepted),
            'accepted_score_mean': float(np.mean(accepted)) if accepted else 0.0,
            'accepted_score_std': float(np.std(accepted)) if accepted else 0.0,
            'attempt_score_mean': float(np.mean(all_scores)) if all_scores else 0.0,
            'synthesis_passes': sum(1 for i in self.iterations if i.synthesis_ran),
            'total_duration_seconds': float(sum(i.duration_seconds for i in self.iterations))
        }
        self.metadata['summary_stats'] = stats
        return stats

    def to_dict(self) -> Dict:
        return {
            'metadata': self.metadata,
            'events': [e.to_dict() for e in self.events],
            'context_traces': [t.to_dict() for t in self.context_traces],
            'activity': list(self.activity),
            'attempts': [a.to_dict() for a in self.attempts],
            'iterations': [i.to_dict() for i in self.iterations]
        }

    def save(self, filename: Optional[str] = None) -> str:
        """Save the run log to a JSON file."""
        if filename is None:
            os.makedirs(self.log_dir, exist_ok=True)
            filename = f"{self.log_dir}/{self.experiment_name}_{self.timestamp}_run.json"

        self.calculate_summary_stats()

        with open(filename, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

        print(f"\n[RUN_LOGGER] Saved run log to: {filename}")
        return filename
