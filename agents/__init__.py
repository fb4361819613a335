"""
Agents for the multi-agent step pipeline

Agents:
- StepWriter: Prompt building + step execution
- CriticAgent: Quality scoring (0-1) with lenient verdict parsing
- SynthesizerAgent: Cross-step conflicts, gaps, redundancies, improvements
- LLMAgentExecutor: Chat-model backed agent executor
"""

from agents.base import get_llm, clean_output, extract_thinking, extract_json_block, PipelineConfig
from agents.executor import AgentExecutor, CallableAgentExecutor, LLMAgentExecutor
from agents.critic import CriticAgent, QualityScore, parse_quality_score
from agents.writer import StepWriter, StepContext
from agents.synthesizer import SynthesizerAgent, SynthesisResult, parse_synthesis

__all__ = [
    'get_llm',
    'clean_output',
    'extract_thinking',
    'extract_json_block',
    'PipelineConfig',
    'AgentExecutor',
    'CallableAgentExecutor',
    'LLMAgentExecutor',
    'CriticAgent',
    'QualityScore',
    'parse_quality_score',
    'StepWriter',
    'StepContext',
    'SynthesizerAgent',
    'SynthesisResult',
    'parse_synthesis'
]
