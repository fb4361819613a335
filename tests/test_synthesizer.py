"""
Tests for synthesis decoding and the SynthesizerAgent.
"""

import json
from unittest.mock import MagicMock

import pytest

from agents.critic import QualityScore
from agents.synthesizer import (
    Conflict,
    Improvement,
    SynthesisResult,
    SynthesizerAgent,
    decode_synthesis,
    parse_synthesis
)
from orchestrator.errors import ExecutorError, SynthesisParseError
from orchestrator.graph import Step
from orchestrator.parallel import StepResult


FULL_RESPONSE = json.dumps({
    "conflicts": [{"step": "Intro", "issue": "contradicts Body on scope"}],
    "gaps": ["no conclusion"],
    "redundancies": ["Intro and Body repeat the definition"],
    "improvements": [
        {"step": "Intro", "suggestion": "narrow the scope"},
        {"step": "Body", "suggestion": "add an example"},
        {"step": "Intro", "suggestion": "cite the source"},
    ],
    "summary": "Mostly consistent"
})


class TestParseSynthesis:
    """Tests for lenient synthesis decoding."""

    def test_well_formed_response(self):
        synthesis = parse_synthesis(FULL_RESPONSE)
        assert synthesis.conflicts == [Conflict("Intro", "contradicts Body on scope")]
        assert synthesis.gaps == ["no conclusion"]
        assert synthesis.redundancies == ["Intro and Body repeat the definition"]
        assert len(synthesis.improvements) == 3
        assert synthesis.summary == "Mostly consistent"
        assert not synthesis.is_empty

    def test_decoding_is_idempotent(self):
        assert parse_synthesis(FULL_RESPONSE) == parse_synthesis(FULL_RESPONSE)

    def test_improvements_grouped_by_step(self):
        grouped = parse_synthesis(FULL_RESPONSE).improvements_by_step()
        assert grouped == {
            "Intro": ["narrow the scope", "cite the source"],
            "Body": ["add an example"],
        }

    def test_malformed_entries_dropped(self):
        response = json.dumps({
            "improvements": [{"step": "A"}, {"suggestion": "orphan"}, "text", {"step": "B", "suggestion": "ok"}],
            "conflicts": [{"step": "", "issue": "x"}]
        })
        synthesis = parse_synthesis(response)
        assert synthesis.improvements == [Improvement("B", "ok")]
        assert synthesis.conflicts == []

    def test_missing_fields_are_empty(self):
        synthesis = parse_synthesis('{"summary": "nothing to add"}')
        assert synthesis.is_empty
        assert synthesis.summary == "nothing to add"

    def test_unparseable_response_is_empty_result(self):
        assert parse_synthesis("no structured output") == SynthesisResult()

    def test_two_json_blocks_are_empty_result(self):
        response = '{"gaps": ["a"]} and also {"gaps": ["b"]}'
        assert parse_synthesis(response).is_empty

    def test_wrong_field_shape_is_empty_result(self):
        assert parse_synthesis('{"gaps": "just one"}').is_empty

    def test_strict_decoder_raises(self):
        with pytest.raises(SynthesisParseError):
            decode_synthesis("")
        with pytest.raises(SynthesisParseError):
            decode_synthesis('{"improvements": {"step": "A"}}')

    def test_to_dict(self):
        data = parse_synthesis(FULL_RESPONSE).to_dict()
        assert data["conflicts"] == [{"step": "Intro", "issue": "contradicts Body on scope"}]
        assert data["improvements"][1] == {"step": "Body", "suggestion": "add an example"}


class TestSynthesizerAgent:
    """Tests for synthesis and conflict-resolution prompts and calls."""

    def _results(self):
        return [
            StepResult(step=Step(id="a", name="Intro"), success=True, output="intro text",
                       quality_score=QualityScore(0.9)),
            StepResult(step=Step(id="b", name="Body"), success=False, error="boom"),
            StepResult(step=Step(id="c", name="Outro"), success=True, output="outro text"),
        ]

    def test_prompt_lists_successes_only(self):
        prompt = SynthesizerAgent(MagicMock()).build_synthesis_prompt(self._results())
        assert prompt.startswith("You are a synthesis agent")
        assert "### Intro\nQuality Score: 90.0%" in prompt
        assert "intro text" in prompt
        assert "### Outro\nQuality Score: N/A" in prompt
        assert "### Body" not in prompt

    def test_synthesize_parses_response(self):
        executor = MagicMock()
        executor.execute.return_value = FULL_RESPONSE
        synthesis = SynthesizerAgent(executor).synthesize(self._results(), "/scope")
        assert len(synthesis.improvements) == 3
        assert executor.execute.call_args[0][1] == "/scope"

    def test_synthesize_executor_failure_propagates(self):
        executor = MagicMock()
        executor.execute.side_effect = ExecutorError("down")
        with pytest.raises(ExecutorError):
            SynthesizerAgent(executor).synthesize(self._results(), "/scope")

    def test_resolve_conflicts(self):
        executor = MagicMock()
        executor.execute.return_value = json.dumps({
            "resolution": "Use the narrower scope everywhere",
            "recommendedActions": ["edit Intro", "edit Body"]
        })
        resolution = SynthesizerAgent(executor).resolve_conflicts(
            [Conflict("Intro", "scope mismatch")], "/scope"
        )
        assert resolution.resolution == "Use the narrower scope everywhere"
        assert resolution.recommended_actions == ["edit Intro", "edit Body"]
        prompt = executor.execute.call_args[0][0]
        assert prompt.startswith("You are a conflict resolution agent")
        assert "- Intro: scope mismatch" in prompt

    def test_resolve_conflicts_without_conflicts_skips_call(self):
        executor = MagicMock()
        assert SynthesizerAgent(executor).resolve_conflicts([], "/scope") is None
        executor.execute.assert_not_called()

    def test_resolve_conflicts_failure_returns_none(self):
        executor = MagicMock()
        executor.execute.side_effect = ExecutorError("down")
        assert SynthesizerAgent(executor).resolve_conflicts([Conflict("A", "x")], "/s") is None

        executor.execute.side_effect = None
        executor.execute.return_value = "no json"
        assert SynthesizerAgent(executor).resolve_conflicts([Conflict("A", "x")], "/s") is None
