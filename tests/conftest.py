"""
Pytest fixtures and configuration for the step pipeline test suite.
"""

import json
import re
import threading
from pathlib import Path
from typing import Dict, List, Optional

import pytest

# Ensure the packages are importable without installation
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from agents.base import PipelineConfig
from agents.executor import AgentExecutor
from orchestrator.errors import ExecutorError
from orchestrator.graph import Step, StepGraph, WorkflowProject


EMPTY_SYNTHESIS = json.dumps({
    "conflicts": [], "gaps": [], "redundancies": [], "improvements": [], "summary": "ok"
})


class TaskPromptAssembly:
    """Base prompt whose first line names the step, so fakes can route on it."""

    def __init__(self):
        self.calls = []

    def get_base_prompt(self, step_id, step, project, options):
        self.calls.append((step_id, options))
        return f"TASK: {step_id}\nDo the work for {step.display_name}."


class RecordingPersistence:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.saved: List[tuple] = []
        self._lock = threading.Lock()

    def save(self, step_id, content):
        if self.fail:
            from orchestrator.errors import PersistError
            raise PersistError("disk full")
        with self._lock:
            self.saved.append((step_id, content))


class ScriptedExecutor(AgentExecutor):
    """
    Fake agent executor.

    Routes on prompt shape:
    - "You are a quality evaluator" -> next scripted score for the step
    - "You are a synthesis agent" -> synthesis_response
    - "You are a conflict resolution agent" -> resolution_response
    - "TASK: <id>" + "## Synthesis Feedback" -> refinement output
    - "TASK: <id>" -> execution output
    """

    def __init__(self, scores: Optional[Dict[str, List[float]]] = None, default_score: float = 0.9,
                 synthesis_response: str = EMPTY_SYNTHESIS, resolution_response: str = "",
                 fail_execute: tuple = (), fail_score: tuple = (), fail_refine: tuple = (),
                 fail_synthesis: bool = False, fail_execute_times: Optional[Dict[str, int]] = None):
        self.scores = {k: list(v) for k, v in (scores or {}).items()}
        self.default_score = default_score
        self.synthesis_response = synthesis_response
        self.resolution_response = resolution_response
        self.fail_execute = set(fail_execute)
        self.fail_score = set(fail_score)
        self.fail_refine = set(fail_refine)
        self.fail_synthesis = fail_synthesis
        self.fail_execute_times = dict(fail_execute_times or {})
        self.calls: List[tuple] = []  # (kind, key, prompt, scope)
        self._exec_counts: Dict[str, int] = {}
        self._lock = threading.Lock()

    def _record(self, kind, key, prompt, scope):
        with self._lock:
            self.calls.append((kind, key, prompt, scope))

    def count(self, kind: str, key: Optional[str] = None) -> int:
        return sum(1 for c in self.calls if c[0] == kind and (key is None or c[1] == key))

    def prompts(self, kind: str, key: Optional[str] = None) -> List[str]:
        return [c[2] for c in self.calls if c[0] == kind and (key is None or c[1] == key)]

    def execute(self, prompt, scope_context):
        if prompt.startswith("You are a quality evaluator"):
            step_name = re.search(r"^Step: (.*)$", prompt, re.MULTILINE).group(1)
            self._record("score", step_name, prompt, scope_context)
            if step_name in self.fail_score:
                raise ExecutorError(f"scoring unavailable for {step_name}")
            with self._lock:
                sequence = self.scores.get(step_name)
                score = sequence.pop(0) if sequence else self.default_score
            return json.dumps({"score": score, "feedback": f"scored {score}", "issues": [f"issue at {score}"]})

        if prompt.startswith("You are a synthesis agent"):
            self._record("synthesis", None, prompt, scope_context)
            if self.fail_synthesis:
                raise ExecutorError("synthesis unavailable")
            return self.synthesis_response

        if prompt.startswith("You are a conflict resolution agent"):
            self._record("resolution", None, prompt, scope_context)
            return self.resolution_response

        step_id = re.match(r"TASK: (\S+)", prompt).group(1)
        if "## Synthesis Feedback" in prompt:
            self._record("refine", step_id, prompt, scope_context)
            if step_id in self.fail_refine:
                raise ExecutorError(f"refinement failed for {step_id}")
            return f"refined output of {step_id}"

        self._record("execute", step_id, prompt, scope_context)
        with self._lock:
            remaining = self.fail_execute_times.get(step_id, 0)
            if remaining:
                self.fail_execute_times[step_id] = remaining - 1
        if step_id in self.fail_execute or remaining:
            raise ExecutorError(f"agent crashed on {step_id}")
        with self._lock:
            n = self._exec_counts.get(step_id, 0) + 1
            self._exec_counts[step_id] = n
        return f"output of {step_id} #{n}"


def make_project(entries, project_id: str = "wf", use_conversation_memory: bool = True,
                 scope_directory: str = "/tmp/scope", output_directory: str = "") -> WorkflowProject:
    """entries: list of (step_id, [dependency ids]) or dicts accepted by Step.from_dict."""
    steps = []
    for entry in entries:
        if isinstance(entry, dict):
            steps.append(Step.from_dict(entry))
        else:
            step_id, deps = entry
            steps.append(Step(id=step_id, name=step_id, dependencies=list(deps)))
    return WorkflowProject(
        id=project_id,
        graph=StepGraph(steps),
        scope_directory=scope_directory,
        output_directory=output_directory,
        use_conversation_memory=use_conversation_memory
    )


@pytest.fixture
def config():
    cfg = PipelineConfig()
    cfg.enable_detailed_logging = False
    return cfg


@pytest.fixture
def prompt_assembly():
    return TaskPromptAssembly()


@pytest.fixture
def persistence():
    return RecordingPersistence()
