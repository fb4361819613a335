"""
Synthesis Coordinator: cross-step reconciliation for one iteration.

Runs only when at least two steps succeeded in the batch. Synthesis never
halts a run: an executor failure or an unreadable response simply means no
synthesis this iteration. Refinement is one extra pass over the steps that
received suggestions and never un-completes a step.
"""

from typing import Callable, Dict, List, Optional

from agents.base import PipelineConfig
from agents.synthesizer import ConflictResolution, SynthesisResult, SynthesizerAgent
from agents.writer import StepWriter
from orchestrator.graph import Step, WorkflowProject
from orchestrator.parallel import StepResult

MIN_SUCCESSES = 2


class SynthesisCoordinator:

    def __init__(self, synthesizer: SynthesizerAgent, writer: StepWriter,
                 config: PipelineConfig = None,
                 persist: Optional[Callable[[Step, str], None]] = None,
                 run_logger=None, discussions=None):
        self.synthesizer = synthesizer
        self.writer = writer
        self.config = config or PipelineConfig()
        self.persist = persist
        self.run_logger = run_logger
        self.discussions = discussions

    def _log(self, message: str):
        if self.run_logger is not None:
            self.run_logger.log(message, tag="SYNTHESIS")
        else:
            print(f"[SYNTHESIS] {message}")

    @staticmethod
    def should_synthesize(results: List[StepResult]) -> bool:
        return sum(1 for r in results if r.success) >= MIN_SUCCESSES

    def synthesize(self, project: WorkflowProject, results: List[StepResult]) -> Optional[SynthesisResult]:
        """Analyze the batch's successes; None when skipped or when the call failed."""
        successes = [r for r in results if r.success]
        if len(successes) < MIN_SUCCESSES:
            return None

        scope_context = project.scope_context(self.config.default_scope_directory)
        try:
            synthesis = self.synthesizer.synthesize(successes, scope_context)
        except Exception as e:
            self._log(f"Warning: Synthesis failed: {e}")
            return None

        self._log("Synthesis completed")
        return synthesis

    def refine(self, project: WorkflowProject, results: List[StepResult],
               synthesis: Optional[SynthesisResult]) -> List[str]:
        """
        Apply synthesis suggestions, one extra agent call per affected step.

        Returns the names of the steps whose output was replaced.
        """
        if synthesis is None or not synthesis.improvements:
            return []

        grouped = synthesis.improvements_by_step()
        scope_context = project.scope_context(self.config.default_scope_directory)
        refined = []

        for result in results:
            if not result.success:
                continue

            step = result.step
            suggestions = self._suggestions_for(step, grouped)
            if not suggestions:
                continue

            self._log(f'Refining "{step.display_name}" based on synthesis feedback...')
            prompt = self.writer.build_synthesis_refinement_prompt(
                result.prompt, result.output, suggestions
            )

            try:
                refined_output = self.writer.execute(prompt, step, scope_context,
                                                     attempt=result.attempts + 1)
                if not refined_output:
                    raise ValueError("empty refinement output")
            except Exception as e:
                self._log(f'✗ Error refining "{step.display_name}": {e}')
                continue

            step.output = refined_output
            result.output = refined_output
            if self.persist is not None:
                self.persist(step, refined_output)

            refined.append(step.display_name)
            self._log(f'✓ Refined "{step.display_name}"')

        return refined

    @staticmethod
    def _suggestions_for(step: Step, grouped: Dict[str, List[str]]) -> List[str]:
        suggestions = list(grouped.get(step.display_name, []))
        if step.id != step.display_name:
            suggestions.extend(grouped.get(step.id, []))
        return suggestions

    def resolve_conflicts(self, project: WorkflowProject,
                          synthesis: Optional[SynthesisResult]) -> Optional[ConflictResolution]:
        """
        Reconcile reported conflicts and record the outcome in the
        conflicting steps' discussion history.
        """
        if not self.config.enable_conflict_resolution:
            return None
        if synthesis is None or not synthesis.conflicts:
            return None

        scope_context = project.scope_context(self.config.default_scope_directory)
        resolution = self.synthesizer.resolve_conflicts(synthesis.conflicts, scope_context)
        if resolution is None:
            self._log("Conflict resolution produced no usable result")
            return None

        if self.discussions is not None:
            by_name = {s.display_name: s for s in project.graph}
            seen = set()
            for conflict in synthesis.conflicts:
                step = by_name.get(conflict.step_name) or project.graph.get(conflict.step_name)
                if step is None or step.id in seen:
                    continue
                seen.add(step.id)
                self.discussions.add_for_step(step.id, "Resolver", resolution.resolution)
                for action in resolution.recommended_actions:
                    self.discussions.add_for_step(step.id, "Resolver", f"Recommended action: {action}")

        self._log(f"Resolved {len(synthesis.conflicts)} conflict(s)")
        return resolution
