"""
Quality Gate: the per-step attempt cycle.

    Build -> Execute -> Score -> Accept | Retry | GiveUp

A low score triggers a refinement retry while retries remain; after the
budget is spent the last output is accepted whatever its score. An
executor failure at Execute or Score ends the gate run for this step
without acceptance; the step stays incomplete and becomes ready again in
the next iteration.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from agents.base import PipelineConfig
from agents.critic import CriticAgent
from agents.writer import StepWriter
from orchestrator.errors import ExecutorError, StepExecutionError
from orchestrator.graph import Step, StepStatus, WorkflowProject
from orchestrator.parallel import StepResult


@dataclass
class ActiveAgent:
    role: str
    retry_count: int = 0
    started_at: float = field(default_factory=time.time)


class QualityGate:
    """Runs a step through build, execution, scoring and bounded refinement."""

    def __init__(self, writer: StepWriter, critic: CriticAgent, config: PipelineConfig = None,
                 persistence=None, run_logger=None,
                 active_agents: Optional[Dict[str, ActiveAgent]] = None):
        self.writer = writer
        self.critic = critic
        self.config = config or PipelineConfig()
        self.persistence = persistence
        self.run_logger = run_logger
        self.active_agents = active_agents if active_agents is not None else {}

    def _log(self, message: str):
        if self.run_logger is not None:
            self.run_logger.log(message, tag="QUALITY_GATE")
        else:
            print(f"[QUALITY_GATE] {message}")

    def should_retry(self, step: Step, quality) -> bool:
        return (quality.score < self.config.quality_threshold
                and step.retry_count < self.config.max_quality_retries)

    def run(self, project: WorkflowProject, step: Step, iteration: int = 0) -> StepResult:
        """
        Execute one step until its output is accepted.

        Raises:
            StepExecutionError: the agent failed outright; the step is left
                NEEDS_REVISION.
        """
        scope_context = project.scope_context(self.config.default_scope_directory)
        step.status = StepStatus.IN_PROGRESS
        step.retry_count = 0
        self.active_agents[step.id] = ActiveAgent(role="executor")

        try:
            prompt = self.writer.build_prompt(project, step)
            attempt_prompt = prompt
            attempts = 0

            while True:
                attempts += 1
                start = time.time()
                output = self.writer.execute(attempt_prompt, step, scope_context, attempt=attempts)

                if self.run_logger is not None:
                    self.run_logger.add_context_trace(step.display_name, "quality_evaluation")
                quality = self.critic.score(output, step, scope_context)
                step.last_quality_score = quality

                retry = self.should_retry(step, quality)
                if self.run_logger is not None:
                    self.run_logger.log_attempt(iteration, step.id, attempts, quality,
                                                accepted=not retry, output=output,
                                                duration=time.time() - start)
                if not retry:
                    break

                self._log(f'Quality score {quality.percent} for "{step.display_name}" '
                          f'below threshold. Retrying with refinement...')
                attempt_prompt = self.writer.build_refinement_prompt(prompt, output, quality)
                step.retry_count += 1
                self.active_agents[step.id] = ActiveAgent(role="executor", retry_count=step.retry_count)

            self.accept(step, output)
            self._log(f'Quality score for "{step.display_name}": {quality.percent}')

            return StepResult(
                step=step,
                success=True,
                output=output,
                quality_score=quality,
                attempts=attempts,
                prompt=prompt
            )

        except ExecutorError as e:
            step.status = StepStatus.NEEDS_REVISION
            raise StepExecutionError(step.id, f"Agent execution failed for {step.display_name}: {e}") from e
        except Exception:
            step.status = StepStatus.NEEDS_REVISION
            raise
        finally:
            self.active_agents.pop(step.id, None)

    def accept(self, step: Step, output: str):
        """Record the accepted output, mark the step complete and persist it."""
        step.output = output
        step.status = StepStatus.COMPLETE
        self.persist(step, output)

    def persist(self, step: Step, output: str):
        if self.persistence is None:
            self._log(f"No output persistence configured, skipping save for {step.display_name}")
            return
        try:
            self.persistence.save(step.id, output)
        except Exception as e:
            self._log(f"Failed to save output for {step.display_name}: {e}")
