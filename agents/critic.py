"""
Critic Agent: Quality scoring for step outputs.

Responsibilities:
1. Build the evaluation prompt for one step's output
2. Ask the agent executor for a JSON verdict
3. Decode the verdict leniently into a QualityScore

Input: step output + step record
Output: QualityScore (score in [0, 1], feedback, issues)

An unreadable verdict never fails the step: it decodes to a fixed default
score. An executor failure during scoring does propagate, since the step
attempt cannot be judged at all.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List

from agents.base import PipelineConfig, extract_json_block, format_percent
from agents.executor import AgentExecutor
from orchestrator.errors import QualityParseError


@dataclass
class QualityScore:
    """Output from Critic Agent evaluation."""
    score: float
    feedback: str = ""
    issues: List[str] = field(default_factory=list)

    def __post_init__(self):
        score = float(self.score)
        if not math.isfinite(score):
            raise ValueError(f"quality score must be finite, got {self.score!r}")
        self.score = max(0.0, min(1.0, score))

    @property
    def percent(self) -> str:
        return format_percent(self.score)

    def to_dict(self) -> Dict:
        return {
            "score": self.score,
            "feedback": self.feedback,
            "issues": list(self.issues)
        }


DEFAULT_SCORE = 0.7
MISSING_SCORE = 0.5


def default_quality_score() -> QualityScore:
    """Fallback used whenever an evaluation response cannot be decoded."""
    return QualityScore(
        score=DEFAULT_SCORE,
        feedback="could not parse evaluation",
        issues=["Quality evaluation response format invalid"]
    )


def decode_quality_score(response: str) -> QualityScore:
    """
    Strict decode of an evaluation response.

    Raises:
        QualityParseError: the response holds no decodable JSON object or
            its score is not a finite number.
    """
    try:
        data = extract_json_block(response)
    except ValueError as e:
        raise QualityParseError(str(e)) from e

    raw_score = data.get('score')
    if raw_score is None:
        raw_score = MISSING_SCORE
    try:
        score = float(raw_score)
    except (TypeError, ValueError, OverflowError) as e:
        raise QualityParseError(f"score is not numeric: {raw_score!r}") from e
    if not math.isfinite(score):
        raise QualityParseError(f"score is not finite: {raw_score!r}")

    issues = data.get('issues') or []
    if isinstance(issues, str):
        issues = [issues]
    elif not isinstance(issues, list):
        raise QualityParseError(f"issues is not a list: {issues!r}")

    return QualityScore(
        score=score,
        feedback=str(data.get('feedback') or 'No feedback provided'),
        issues=[str(i) for i in issues]
    )


def parse_quality_score(response: str) -> QualityScore:
    """Lenient decode: any parse problem yields the default score."""
    try:
        return decode_quality_score(response)
    except QualityParseError as e:
        print(f"[CRITIC] Could not parse evaluation: {e}")
        return default_quality_score()


class CriticAgent:
    """
    Critic Agent: Evaluates step output for quality.

    Uses the same agent executor as step execution, with a scoring prompt.
    """

    def __init__(self, executor: AgentExecutor, config: PipelineConfig = None):
        self.executor = executor
        self.config = config or PipelineConfig()

    def build_scoring_prompt(self, output: str, step) -> str:
        return f"""You are a quality evaluator. Evaluate the following output for a pipeline step.

Step: {step.display_name}
Step Type: {step.step_type or 'unknown'}

Expected Output: The output should be complete, accurate, relevant to the step's goals, and well-structured.

Output to Evaluate:
{output}

Provide a JSON response with:
{{
  "score": <number between 0 and 1>,
  "feedback": "<brief explanation of the score>",
  "issues": ["<issue 1>", "<issue 2>", ...]
}}

Score guidelines:
- 0.9-1.0: Excellent, complete, accurate, well-structured
- 0.8-0.9: Good, minor issues or missing details
- 0.7-0.8: Acceptable, some issues but usable
- 0.6-0.7: Needs improvement, significant issues
- Below 0.6: Poor quality, major problems

Respond with ONLY the JSON object, no additional text."""

    def score(self, output: str, step, scope_context: str) -> QualityScore:
        """
        Score one step output.

        Raises:
            ExecutorError: the evaluation call itself failed.
        """
        response = self.executor.execute(self.build_scoring_prompt(output, step), scope_context)
        quality = parse_quality_score(response)

        print(f"[CRITIC] {step.display_name}: {quality.percent}"
              f"{' (' + str(len(quality.issues)) + ' issues)' if quality.issues else ''}")
        return quality
