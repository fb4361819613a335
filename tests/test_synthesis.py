"""
Tests for the synthesis coordinator: trigger rule, soft failure and refinement.
"""

import json

from agents.critic import QualityScore
from agents.synthesizer import Conflict, Improvement, SynthesisResult, SynthesizerAgent
from agents.writer import StepWriter
from orchestrator.discussions import DiscussionBoard
from orchestrator.graph import StepStatus
from orchestrator.parallel import StepResult
from orchestrator.synthesis import SynthesisCoordinator
from utils.run_logger import RunLogger

from conftest import ScriptedExecutor, TaskPromptAssembly, make_project


def _completed_results(project, ids, failed=()):
    results = []
    for step_id in ids:
        step = project.graph[step_id]
        if step_id in failed:
            results.append(StepResult(step=step, success=False, error="boom"))
            continue
        step.status = StepStatus.COMPLETE
        step.output = f"output of {step_id} #1"
        results.append(StepResult(step=step, success=True, output=step.output,
                                  quality_score=QualityScore(0.9), attempts=1,
                                  prompt=f"TASK: {step_id}\nDo the work for {step.display_name}."))
    return results


def _coordinator(executor, config, persist=None, discussions=None, run_logger=None):
    writer = StepWriter(executor, TaskPromptAssembly(), config)
    return SynthesisCoordinator(SynthesizerAgent(executor, config), writer, config,
                                persist=persist, run_logger=run_logger, discussions=discussions)


class TestSynthesisTrigger:

    def test_requires_two_successes(self):
        project = make_project([("a", []), ("b", [])])
        one = _completed_results(project, ["a", "b"], failed=("b",))
        two = _completed_results(make_project([("a", []), ("b", [])]), ["a", "b"])
        assert not SynthesisCoordinator.should_synthesize(one)
        assert SynthesisCoordinator.should_synthesize(two)

    def test_single_success_skips_agent_call(self, config):
        executor = ScriptedExecutor()
        project = make_project([("a", []), ("b", [])])
        results = _completed_results(project, ["a", "b"], failed=("b",))

        assert _coordinator(executor, config).synthesize(project, results) is None
        assert executor.count("synthesis") == 0

    def test_synthesis_sees_only_successes(self, config):
        executor = ScriptedExecutor()
        project = make_project([("a", []), ("b", []), ("c", [])])
        results = _completed_results(project, ["a", "b", "c"], failed=("b",))

        synthesis = _coordinator(executor, config).synthesize(project, results)

        assert synthesis is not None
        prompt = executor.prompts("synthesis")[0]
        assert "### a" in prompt and "### c" in prompt
        assert "### b" not in prompt

    def test_executor_failure_is_soft(self, config):
        executor = ScriptedExecutor(fail_synthesis=True)
        project = make_project([("a", []), ("b", [])])
        results = _completed_results(project, ["a", "b"])
        run_logger = RunLogger(echo=False)

        assert _coordinator(executor, config, run_logger=run_logger).synthesize(project, results) is None
        assert any("Warning: Synthesis failed" in line for line in run_logger.activity)

    def test_unparseable_response_is_empty_synthesis(self, config):
        executor = ScriptedExecutor(synthesis_response="nothing structured")
        project = make_project([("a", []), ("b", [])])
        results = _completed_results(project, ["a", "b"])

        synthesis = _coordinator(executor, config).synthesize(project, results)
        assert synthesis == SynthesisResult()


class TestRefinement:
    """Tests for the single refinement pass."""

    def test_refines_only_steps_with_suggestions(self, config, persistence):
        executor = ScriptedExecutor()
        project = make_project([("a", []), ("b", [])])
        results = _completed_results(project, ["a", "b"])
        synthesis = SynthesisResult(improvements=[Improvement("a", "add detail")])
        persisted = []

        refined = _coordinator(executor, config, persist=lambda s, o: persisted.append((s.id, o))) \
            .refine(project, results, synthesis)

        assert refined == ["a"]
        assert project.graph["a"].output == "refined output of a"
        assert results[0].output == "refined output of a"
        assert project.graph["b"].output == "output of b #1"
        assert persisted == [("a", "refined output of a")]
        assert executor.count("refine") == 1

    def test_refinement_prompt_uses_original_prompt(self, config):
        executor = ScriptedExecutor()
        project = make_project([("a", []), ("b", [])])
        results = _completed_results(project, ["a", "b"])
        synthesis = SynthesisResult(improvements=[Improvement("a", "add detail"),
                                                  Improvement("a", "shorten")])

        _coordinator(executor, config).refine(project, results, synthesis)

        prompt = executor.prompts("refine", "a")[0]
        assert prompt.startswith("TASK: a\nDo the work for a.")
        assert "## Previous Output\noutput of a #1" in prompt
        assert "- add detail\n- shorten" in prompt

    def test_suggestions_matched_by_display_name_or_id(self, config):
        executor = ScriptedExecutor()
        project = make_project([
            {"id": "s1", "name": "Intro"},
            {"id": "s2", "name": "Body"},
        ])
        results = []
        for step in project.graph:
            step.status = StepStatus.COMPLETE
            step.output = "x"
            results.append(StepResult(step=step, success=True, output="x", prompt=f"TASK: {step.id}"))
        synthesis = SynthesisResult(improvements=[Improvement("Intro", "a"), Improvement("s2", "b")])

        refined = _coordinator(executor, config).refine(project, results, synthesis)

        assert refined == ["Intro", "Body"]

    def test_suggestion_for_failed_step_ignored(self, config):
        executor = ScriptedExecutor()
        project = make_project([("a", []), ("b", []), ("c", [])])
        results = _completed_results(project, ["a", "b", "c"], failed=("b",))
        synthesis = SynthesisResult(improvements=[Improvement("b", "try again")])

        assert _coordinator(executor, config).refine(project, results, synthesis) == []
        assert executor.count("refine") == 0

    def test_refinement_failure_keeps_output(self, config):
        executor = ScriptedExecutor(fail_refine=("a",))
        project = make_project([("a", []), ("b", [])])
        results = _completed_results(project, ["a", "b"])
        synthesis = SynthesisResult(improvements=[Improvement("a", "x"), Improvement("b", "y")])

        refined = _coordinator(executor, config).refine(project, results, synthesis)

        assert refined == ["b"]
        assert project.graph["a"].output == "output of a #1"
        assert project.graph["a"].status == StepStatus.COMPLETE

    def test_no_synthesis_means_no_refinement(self, config):
        executor = ScriptedExecutor()
        project = make_project([("a", []), ("b", [])])
        results = _completed_results(project, ["a", "b"])
        coordinator = _coordinator(executor, config)
        assert coordinator.refine(project, results, None) == []
        assert coordinator.refine(project, results, SynthesisResult()) == []


class TestConflictResolution:

    def _synthesis(self):
        return SynthesisResult(conflicts=[Conflict("a", "disagrees with b"), Conflict("a", "units")])

    def test_disabled_by_default(self, config):
        executor = ScriptedExecutor()
        project = make_project([("a", [])])
        assert _coordinator(executor, config).resolve_conflicts(project, self._synthesis()) is None
        assert executor.count("resolution") == 0

    def test_resolution_recorded_in_discussions(self, config):
        config.enable_conflict_resolution = True
        executor = ScriptedExecutor(resolution_response=json.dumps({
            "resolution": "Adopt b's figures", "recommendedActions": ["update a"]
        }))
        project = make_project([("a", []), ("b", [])])
        discussions = DiscussionBoard()

        resolution = _coordinator(executor, config, discussions=discussions) \
            .resolve_conflicts(project, self._synthesis())

        assert resolution.resolution == "Adopt b's figures"
        history = discussions.history_for("a")
        assert [(e.agent_role, e.message) for e in history] == [
            ("Resolver", "Adopt b's figures"),
            ("Resolver", "Recommended action: update a"),
        ]
        assert discussions.history_for("b") == []
