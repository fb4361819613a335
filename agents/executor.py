"""
Agent Executor: the one call shape used for every agent interaction.

Step execution, quality scoring, synthesis, refinement and conflict
resolution all go through execute(prompt, scope_context) -> text. The
orchestration engine never talks to an LLM any other way.

LLMAgentExecutor is the shipped implementation: a LangChain chat model
pointed at an OpenAI-compatible endpoint, with its own retry for
transient failures before an ExecutorError reaches the engine.
"""

import time
from typing import Callable, Optional
from langchain_core.messages import HumanMessage, SystemMessage

from agents.base import PipelineConfig, get_llm, clean_output, extract_thinking
from orchestrator.errors import ExecutorError


class AgentExecutor:
    """Interface for the external text-generation agent."""

    def execute(self, prompt: str, scope_context: str) -> str:
        """Return the agent's text response, or raise ExecutorError."""
        raise NotImplementedError


class CallableAgentExecutor(AgentExecutor):
    """Adapts a plain function (prompt, scope_context) -> str into an executor."""

    def __init__(self, fn: Callable[[str, str], str]):
        self.fn = fn

    def execute(self, prompt: str, scope_context: str) -> str:
        try:
            return self.fn(prompt, scope_context)
        except ExecutorError:
            raise
        except Exception as e:
            raise ExecutorError(str(e)) from e


class LLMAgentExecutor(AgentExecutor):
    """
    Agent executor backed by a chat model.

    Retries a failing call up to executor_max_attempts times with
    exponential backoff (base_delay * 2^(attempt-1)), then raises
    ExecutorError. Empty responses count as failures.
    """

    def __init__(self, config: PipelineConfig = None, llm=None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config or PipelineConfig()
        self.llm = llm or get_llm(temperature=self.config.executor_temperature, thinking_mode=True)
        self._sleep = sleep

    def _system_prompt(self, scope_context: str) -> str:
        prompt = ("You are an autonomous agent executing one step of a multi-step pipeline. "
                  "Follow the step instructions exactly and respond with the step output only.")
        if scope_context:
            prompt += f"\n\nOperate within this scope: {scope_context}"
        return prompt

    def execute(self, prompt: str, scope_context: str) -> str:
        max_attempts = max(1, self.config.executor_max_attempts)
        last_error: Optional[Exception] = None

        for attempt in range(1, max_attempts + 1):
            try:
                response = self.llm.invoke([
                    SystemMessage(content=self._system_prompt(scope_context)),
                    HumanMessage(content=prompt)
                ])
                thinking = extract_thinking(response.content)
                if thinking:
                    print(f"[EXECUTOR]   └─ Thinking: {len(thinking)} chars captured")
                text = clean_output(response.content)
                if not text:
                    raise ExecutorError("Agent returned an empty response")
                return text

            except Exception as e:
                last_error = e
                print(f"[EXECUTOR] Attempt {attempt}/{max_attempts} failed: {e}")
                if attempt < max_attempts:
                    delay = self.config.executor_base_delay * (2 ** (attempt - 1))
                    self._sleep(delay)

        raise ExecutorError(f"Agent execution failed: {last_error}") from last_error
