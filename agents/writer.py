"""
Writer Agent: Builds step prompts and executes them.

Responsibilities:
1. CONTEXT BUILDING: Dependency outputs, scope, reference documents, discussion history
2. PROMPT ENHANCEMENT: Base template + context + prior quality feedback + fresh input
3. EXECUTION: Hand the prompt to the agent executor
4. REFINEMENT PROMPTS: Quality-retry and synthesis-feedback rewrites

Input: WorkflowProject + Step
Output: prompt text / step output text

Whether dependency outputs are pasted into the prompt depends on the
project's use_conversation_memory flag: with memory on, the agent already
holds them and they are referenced by name only.
"""

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from agents.base import PipelineConfig, format_percent
from agents.executor import AgentExecutor
from orchestrator.errors import ConfigurationError, StepExecutionError


@dataclass
class StepContext:
    """Everything the writer gathers before building a step prompt."""
    previous_outputs: List[Dict] = field(default_factory=list)  # {step_id, step_name, output}
    scope_context: str = ""
    reference_documents: List[Dict] = field(default_factory=list)  # {name, content}
    discussion_history: List = field(default_factory=list)  # DiscussionEntry

    def sources(self) -> List[str]:
        names = []
        if self.previous_outputs:
            names.append("previous_outputs")
        if self.scope_context:
            names.append("scope_context")
        if self.reference_documents:
            names.append("reference_documents")
        if self.discussion_history:
            names.append("discussion_history")
        return names


class StepWriter:
    """
    Writer Agent: Turns a step record into an execution prompt and runs it.

    Collaborators:
    - prompt_assembly (required): get_base_prompt(step_id, step, project, options)
    - reference_library (optional): get_documents() -> [{name, content}]
    - discussions (optional): history_for(step_id) -> [DiscussionEntry]
    - run_logger (optional): receives context traces
    """

    def __init__(self, executor: AgentExecutor, prompt_assembly=None,
                 config: PipelineConfig = None, reference_library=None,
                 discussions=None, run_logger=None):
        self.executor = executor
        self.prompt_assembly = prompt_assembly
        self.config = config or PipelineConfig()
        self.reference_library = reference_library
        self.discussions = discussions
        self.run_logger = run_logger

    def _trace(self, step, trace_type: str, sources: Optional[List[str]] = None):
        if self.run_logger is not None:
            self.run_logger.add_context_trace(step.display_name, trace_type, sources or [])

    def build_context(self, project, step) -> StepContext:
        """Aggregate dependency outputs, scope, reference documents and discussions."""
        context = StepContext(scope_context=project.scope_context(self.config.default_scope_directory))

        for dep in project.graph.dependencies_of(step):
            if dep.output:
                context.previous_outputs.append({
                    "step_id": dep.id,
                    "step_name": dep.display_name,
                    "output": dep.output
                })

        if self.reference_library is not None and hasattr(self.reference_library, 'get_documents'):
            try:
                context.reference_documents = [
                    {"name": doc.get('name') or 'Unknown', "content": doc.get('content') or ''}
                    for doc in self.reference_library.get_documents()
                ]
            except Exception as e:
                print(f"[WRITER] Could not load reference documents: {e}")

        if self.discussions is not None:
            context.discussion_history = list(self.discussions.history_for(step.id))

        return context

    def build_enhanced_prompt(self, project, step, context: StepContext) -> str:
        """Base template plus context, prior quality feedback and discussion history."""
        if self.prompt_assembly is None:
            raise ConfigurationError("Prompt assembly not available")

        base_prompt = self.prompt_assembly.get_base_prompt(
            step.id, step, project, {"substitute_input": False}
        )
        if not base_prompt:
            raise StepExecutionError(step.id, f"Could not load prompt for {step.id}")

        prompt = base_prompt

        if context.previous_outputs:
            if not project.use_conversation_memory:
                prompt += "\n\n## Context from Previous Steps\n\n"
                for prev in context.previous_outputs:
                    prompt += f"### {prev['step_name']}\n{prev['output']}\n\n"
            else:
                # Referenced by name only; the agent holds them in conversation memory
                prompt += "\n\n## Previous Steps Available in Conversation\n\n"
                prompt += "The following previous steps are available in the conversation history:\n"
                for prev in context.previous_outputs:
                    prompt += f"- {prev['step_name']}\n"
                prompt += ("\n**CRITICAL**: Build on the results already established by these steps "
                           "and integrate them with the fresh input provided for the current step.\n")

        quality = step.last_quality_score
        if quality is not None and quality.score < self.config.quality_threshold:
            prompt += "\n## Quality Feedback from Previous Attempt\n"
            prompt += f"Score: {format_percent(quality.score)}\n"
            prompt += f"Feedback: {quality.feedback}\n"
            if quality.issues:
                prompt += "Issues to address:\n" + "\n".join(f"- {i}" for i in quality.issues) + "\n"

        if context.reference_documents:
            prompt += "\n## Reference Documents\n\n"
            for doc in context.reference_documents:
                prompt += f"### {doc['name']}\n{doc['content']}\n\n"

        if context.discussion_history:
            prompt += "\n## Agent Discussion History\n\n"
            for entry in context.discussion_history:
                prompt += f"**{entry.agent_role}**: {entry.message}\n\n"

        return prompt

    def get_step_input(self, project, step) -> str:
        """The step's own input, else its dependencies' outputs, else the previous step's output."""
        if step.input and step.input.strip():
            return step.input

        if step.dependencies:
            outputs = [dep.output for dep in project.graph.dependencies_of(step) if dep.output]
            return "\n\n---\n\n".join(outputs)

        # Fallback: previous step by position
        steps = project.graph.steps
        index = project.graph.index_of(step.id)
        if index > 0:
            return steps[index - 1].output or ""

        return ""

    def build_prompt(self, project, step) -> str:
        """
        Build the full execution prompt for one step.

        Raises:
            ConfigurationError: no prompt assembly collaborator.
            StepExecutionError: the base template could not be loaded.
        """
        self._trace(step, "context_building")
        context = self.build_context(project, step)
        enhanced_prompt = self.build_enhanced_prompt(project, step, context)
        self._trace(step, "prompt_enhancement", context.sources())

        step_input = self.get_step_input(project, step)
        if step_input and step_input.strip():
            return (f"{enhanced_prompt}\n\n## Fresh Input for This Step\n\n{step_input}\n\n"
                    "**Note**: Process this fresh input in context of the results established "
                    "by previous steps.")
        return enhanced_prompt

    def execute(self, prompt: str, step, scope_context: str, attempt: int = 1) -> str:
        """Run one attempt. ExecutorError propagates to the caller."""
        print(f"[WRITER] Executing {step.display_name} (attempt {attempt})...")
        start = time.time()
        output = self.executor.execute(prompt, scope_context)
        print(f"[WRITER] {step.display_name}: {len(output)} chars ({time.time() - start:.2f}s)")
        return output

    def build_refinement_prompt(self, original_prompt: str, previous_output: str, quality) -> str:
        """Prompt for a quality retry: the original prompt plus the rejected attempt."""
        issues = "\n".join(f"- {issue}" for issue in quality.issues)
        return f"""{original_prompt}

## Previous Attempt

The previous attempt produced the following output, which received a quality score of {format_percent(quality.score)}:

### Quality Feedback
{quality.feedback}

### Issues Identified
{issues}

### Previous Output
{previous_output}

## Refinement Instructions

Please refine the output to address the issues identified above. Focus on:
1. Completeness: Ensure all required elements are present
2. Accuracy: Correct any errors or inaccuracies
3. Structure: Improve organization and clarity
4. Relevance: Better align with the step's goals

Generate an improved version of the output."""

    def build_synthesis_refinement_prompt(self, original_prompt: str, previous_output: str,
                                          suggestions: List[str]) -> str:
        """Prompt for the synthesis-driven refinement pass."""
        bullets = "\n".join(f"- {s}" for s in suggestions)
        return f"""{original_prompt}

## Previous Output
{previous_output}

## Synthesis Feedback
The synthesis agent identified the following improvements:
{bullets}

## Refinement Instructions
Please refine the output to incorporate the synthesis feedback above. Generate an improved version."""
