"""
Base utilities shared across all agents.

Provides:
- LLM configuration for an OpenAI-compatible endpoint (vLLM by default)
- Output cleaning (remove <think> blocks)
- Lenient JSON extraction from free-text agent responses
- Pipeline configuration dataclass
"""

import json
import os
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional
from langchain_openai import ChatOpenAI

# --- Configuration ---
VLLM_BASE_URL = os.environ.get("PIPELINE_LLM_BASE_URL", "http://localhost:8000/v1")
VLLM_API_KEY = os.environ.get("PIPELINE_LLM_API_KEY", "EMPTY")
MODEL_NAME = os.environ.get("PIPELINE_LLM_MODEL", "Qwen/Qwen3-8B")

_JSON_BLOCK = re.compile(r'\{[\s\S]*\}')


@dataclass
class PipelineConfig:
    """Configuration for the multi-agent step pipeline."""
    # Quality gate
    quality_threshold: float = 0.8  # Score >= threshold to accept
    max_quality_retries: int = 2  # Refinement retries after the first attempt

    # Orchestration loop
    max_iterations: int = 50  # Safety cap
    max_parallel_steps: Optional[int] = None  # None = one worker per ready step

    # Agent executor retry (transient failures only)
    executor_max_attempts: int = 2
    executor_base_delay: float = 2.0  # Seconds, doubled per attempt

    # Observability buffers
    event_history_limit: int = 100
    context_trace_limit: int = 50

    # Synthesis
    enable_conflict_resolution: bool = False

    # Used when a project carries no scope directory of its own
    default_scope_directory: str = ""

    # LLM temperatures per role
    executor_temperature: float = 0.6
    critic_temperature: float = 0.3

    # Detailed logging
    enable_detailed_logging: bool = True


def get_llm(temperature: float = 0.6, thinking_mode: bool = True) -> ChatOpenAI:
    """
    Get configured LLM instance.

    Qwen3 recommended settings:
    - Thinking mode: temperature=0.6, top_p=0.95
    - Non-thinking mode: temperature=0.7, top_p=0.8
    """
    if thinking_mode:
        return ChatOpenAI(
            model=MODEL_NAME,
            base_url=VLLM_BASE_URL,
            api_key=VLLM_API_KEY,
            temperature=temperature,
            top_p=0.95
        )
    else:
        return ChatOpenAI(
            model=MODEL_NAME,
            base_url=VLLM_BASE_URL,
            api_key=VLLM_API_KEY,
            temperature=0.7,
            top_p=0.8
        )


def clean_output(content: str) -> str:
    """Clean LLM output by removing thinking blocks and artifacts."""
    # Remove <think>...</think> blocks
    content = re.sub(r'<think>.*?</think>', '', content, flags=re.DOTALL)

    # Remove common preambles
    preambles = [
        "Here is the ",
        "Here's the ",
        "Below is ",
        "The following is ",
    ]
    for p in preambles:
        if content.lower().startswith(p.lower()):
            # Drop the preamble line if it is short
            idx = content.find('\n')
            if idx > 0 and idx < 100:
                content = content[idx:].strip()

    return content.strip()


def extract_thinking(content: str) -> str:
    """Extract the <think> block from LLM output for logging."""
    match = re.search(r'<think>(.*?)</think>', content, flags=re.DOTALL)
    return match.group(1).strip() if match else ""


def extract_json_block(content: str) -> Dict[str, Any]:
    """
    Decode the JSON object embedded in a free-text agent response.

    The scan is greedy: it spans from the first '{' to the last '}' in the
    response. A response holding two separate objects therefore yields a
    span that is not valid JSON, and decoding fails.

    Raises:
        ValueError: no brace-delimited span, invalid JSON, or a non-object value.
    """
    match = _JSON_BLOCK.search(content or "")
    if not match:
        raise ValueError("no JSON object found in response")

    try:
        data = json.loads(match.group(0))
    except RecursionError as e:
        raise ValueError("JSON object nested too deeply") from e
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


def format_percent(score: float) -> str:
    """Render a 0-1 score the way prompts and logs show it (e.g. '85.0%')."""
    return f"{score * 100:.1f}%"
