"""
Parallel execution of one iteration's ready steps.

Every ready step gets its own worker. A step that raises is reported as a
failed StepResult and never disturbs its siblings. run() returns only when
the whole batch has finished, so no step of the next iteration can start
early.
"""

import concurrent.futures
from dataclasses import dataclass
from typing import Callable, List, Optional

from orchestrator.graph import Step


@dataclass
class StepResult:
    """Outcome of one step's gate run within an iteration."""
    step: Step
    success: bool
    output: str = ""
    quality_score: Optional[object] = None  # QualityScore
    error: str = ""
    attempts: int = 0
    prompt: str = ""

    def to_dict(self) -> dict:
        return {
            "step": self.step.display_name,
            "success": self.success,
            "score": self.quality_score.score if self.quality_score else None,
            "attempts": self.attempts,
            "error": self.error
        }


class ParallelExecutor:
    """Runs a batch of steps concurrently with per-step failure isolation."""

    def __init__(self, run_step: Callable[[Step], StepResult],
                 max_workers: Optional[int] = None, run_logger=None):
        self.run_step = run_step
        self.max_workers = max_workers
        self.run_logger = run_logger

    def _log(self, message: str):
        if self.run_logger is not None:
            self.run_logger.log(message, tag="PARALLEL")
        else:
            print(f"[PARALLEL] {message}")

    def run(self, steps: List[Step]) -> List[StepResult]:
        if not steps:
            return []

        workers = len(steps)
        if self.max_workers:
            workers = min(self.max_workers, workers)

        self._log(f"Processing {len(steps)} step(s) concurrently...")

        results: List[Optional[StepResult]] = [None] * len(steps)
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {executor.submit(self.run_step, step): i for i, step in enumerate(steps)}

            for future in concurrent.futures.as_completed(futures):
                idx = futures[future]
                try:
                    results[idx] = future.result()
                except Exception as e:
                    results[idx] = StepResult(step=steps[idx], success=False, error=str(e) or type(e).__name__)

        # Results in ready-set order
        for result in results:
            if result.success:
                self._log(f"✓ Completed {result.step.display_name}")
            else:
                self._log(f"✗ Error in {result.step.display_name}: {result.error}")

        return results
