"""
Synthesizer Agent: Cross-step analysis of a batch of parallel outputs.

Identifies, in one structured response:
- Conflicts: contradictory information or approaches between steps
- Gaps: missing information that should be present
- Redundancies: duplicate or overlapping content
- Improvements: per-step suggestions that drive the refinement pass

Also handles the optional conflict-resolution prompt.
Parsing is lenient: an unreadable response yields an empty result.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from agents.base import PipelineConfig, extract_json_block
from agents.executor import AgentExecutor
from orchestrator.errors import SynthesisParseError


@dataclass(frozen=True)
class Conflict:
    step_name: str
    issue: str


@dataclass(frozen=True)
class Improvement:
    step_name: str
    suggestion: str


@dataclass
class SynthesisResult:
    """Output from one synthesis pass."""
    conflicts: List[Conflict] = field(default_factory=list)
    gaps: List[str] = field(default_factory=list)
    redundancies: List[str] = field(default_factory=list)
    improvements: List[Improvement] = field(default_factory=list)
    summary: str = ""

    @property
    def is_empty(self) -> bool:
        return not (self.conflicts or self.gaps or self.redundancies or self.improvements)

    def improvements_by_step(self) -> Dict[str, List[str]]:
        grouped: Dict[str, List[str]] = {}
        for improvement in self.improvements:
            grouped.setdefault(improvement.step_name, []).append(improvement.suggestion)
        return grouped

    def to_dict(self) -> Dict:
        return {
            "conflicts": [{"step": c.step_name, "issue": c.issue} for c in self.conflicts],
            "gaps": list(self.gaps),
            "redundancies": list(self.redundancies),
            "improvements": [{"step": i.step_name, "suggestion": i.suggestion} for i in self.improvements],
            "summary": self.summary
        }


@dataclass
class ConflictResolution:
    resolution: str
    recommended_actions: List[str] = field(default_factory=list)


def _text_list(value) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise SynthesisParseError(f"expected a list, got {type(value).__name__}")
    return [str(v) for v in value if v is not None and str(v).strip()]


def _pairs(value, key: str) -> List[tuple]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise SynthesisParseError(f"expected a list, got {type(value).__name__}")
    pairs = []
    for item in value:
        # Entries missing either field are dropped
        if isinstance(item, dict) and item.get('step') and item.get(key):
            pairs.append((str(item['step']), str(item[key])))
    return pairs


def decode_synthesis(response: str) -> SynthesisResult:
    """
    Strict decode of a synthesis response.

    Raises:
        SynthesisParseError: no decodable JSON object, or a field of the wrong shape.
    """
    try:
        data = extract_json_block(response)
    except ValueError as e:
        raise SynthesisParseError(str(e)) from e

    return SynthesisResult(
        conflicts=[Conflict(s, i) for s, i in _pairs(data.get('conflicts'), 'issue')],
        gaps=_text_list(data.get('gaps')),
        redundancies=_text_list(data.get('redundancies')),
        improvements=[Improvement(s, i) for s, i in _pairs(data.get('improvements'), 'suggestion')],
        summary=str(data.get('summary') or '')
    )


def parse_synthesis(response: str) -> SynthesisResult:
    """Lenient decode: any parse problem yields an empty result."""
    try:
        return decode_synthesis(response)
    except SynthesisParseError as e:
        print(f"[SYNTHESIS] Could not parse synthesis response: {e}")
        return SynthesisResult()


class SynthesizerAgent:
    """Synthesizer Agent: reconciles outputs produced concurrently in one iteration."""

    def __init__(self, executor: AgentExecutor, config: PipelineConfig = None):
        self.executor = executor
        self.config = config or PipelineConfig()

    def build_synthesis_prompt(self, results: List) -> str:
        """Prompt enumerating every successful result's name, score and output."""
        prompt = """You are a synthesis agent. Analyze the following parallel execution results and identify:

1. **Conflicts**: Contradictory information or approaches
2. **Gaps**: Missing information that should be present
3. **Redundancies**: Duplicate or overlapping content
4. **Improvement Opportunities**: Ways to enhance the outputs

## Parallel Execution Results

"""
        for result in results:
            if not result.success:
                continue
            score = result.quality_score.percent if result.quality_score else "N/A"
            prompt += f"""### {result.step.display_name}
Quality Score: {score}

Output:
{result.output}

---

"""

        prompt += """## Synthesis Instructions

Provide a JSON response with:
{
  "conflicts": [{"step": "<step name>", "issue": "<description>"}, ...],
  "gaps": ["<gap description 1>", ...],
  "redundancies": ["<redundancy description 1>", ...],
  "improvements": [{"step": "<step name>", "suggestion": "<improvement>"}, ...],
  "summary": "<overall synthesis summary>"
}

Respond with ONLY the JSON object, no additional text."""
        return prompt

    def synthesize(self, results: List, scope_context: str) -> SynthesisResult:
        """Raises ExecutorError if the synthesis call fails."""
        response = self.executor.execute(self.build_synthesis_prompt(results), scope_context)
        synthesis = parse_synthesis(response)
        print(f"[SYNTHESIS] {len(synthesis.conflicts)} conflicts, {len(synthesis.gaps)} gaps, "
              f"{len(synthesis.redundancies)} redundancies, {len(synthesis.improvements)} improvements")
        return synthesis

    def build_resolution_prompt(self, conflicts: List[Conflict]) -> str:
        listed = "\n".join(f"- {c.step_name}: {c.issue}" for c in conflicts)
        return f"""You are a conflict resolution agent. The following conflicts were detected in parallel execution:

{listed}

Please provide a resolution that reconciles these conflicts. Respond with a JSON object:
{{
  "resolution": "<description of resolution>",
  "recommendedActions": ["<action 1>", ...]
}}"""

    def resolve_conflicts(self, conflicts: List[Conflict], scope_context: str) -> Optional[ConflictResolution]:
        """Ask for a reconciliation of the given conflicts; None when there is nothing usable."""
        if not conflicts:
            return None

        try:
            response = self.executor.execute(self.build_resolution_prompt(conflicts), scope_context)
            data = extract_json_block(response)
        except Exception as e:
            print(f"[SYNTHESIS] Error resolving conflicts: {e}")
            return None

        resolution = str(data.get('resolution') or '').strip()
        if not resolution:
            return None
        actions = data.get('recommendedActions') or []
        if not isinstance(actions, list):
            actions = [actions]
        return ConflictResolution(resolution=resolution, recommended_actions=[str(a) for a in actions])
