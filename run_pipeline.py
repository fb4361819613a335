"""
Multi-Agent Step Pipeline - Runner
==================================
Run a workflow file through the multi-agent orchestrator.

Workflow file (JSON):
    {
      "id": "essay",
      "name": "Essay pipeline",
      "scope_directory": "/path/to/workspace",
      "output_directory": "/path/to/outputs",
      "use_conversation_memory": false,
      "reference_documents": [{"name": "...", "content": "..."}],
      "steps": [
        {"id": "outline", "name": "Outline", "prompt": "Write an outline...", "dependencies": []},
        {"id": "draft", "name": "Draft", "prompt": "Write the draft...", "dependencies": ["outline"]}
      ]
    }

Usage:
    python run_pipeline.py workflow.json
    python run_pipeline.py workflow.json --input "Topic: ..." --max-iterations 20
"""

import argparse
import json
import sys
from typing import Dict

from agents.base import PipelineConfig
from agents.executor import LLMAgentExecutor
from orchestrator.collaborators import (
    InMemoryProjectStore,
    StaticReferenceLibrary,
    TemplatePromptAssembly
)
from orchestrator.errors import OrchestrationError
from orchestrator.graph import WorkflowProject
from orchestrator.workflow import OrchestrationLoop


def load_workflow(path: str) -> Dict:
    with open(path, 'r', encoding='utf-8') as f:
        workflow = json.load(f)
    if not isinstance(workflow, dict):
        raise ValueError("workflow file must hold a JSON object")
    return workflow


def build_prompt_assembly(workflow: Dict) -> TemplatePromptAssembly:
    templates = {s['id']: s['prompt'] for s in workflow.get('steps', []) if s.get('prompt')}
    return TemplatePromptAssembly(templates, default_template=workflow.get('default_prompt', ''))


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run a multi-agent step pipeline")
    parser.add_argument("workflow", help="Path to the workflow JSON file")
    parser.add_argument("--input", dest="initial_input", default=None,
                        help="Initial input for the first incomplete step")
    parser.add_argument("--scope", default=None, help="Override the scope directory")
    parser.add_argument("--output-dir", default=None, help="Override the output directory")
    parser.add_argument("--max-iterations", type=int, default=None)
    parser.add_argument("--threshold", type=float, default=None, help="Quality acceptance threshold (0-1)")
    parser.add_argument("--resolve-conflicts", action="store_true",
                        help="Run the conflict-resolution agent after synthesis")
    parser.add_argument("--log-dir", default="logs")
    parser.add_argument("--quiet", action="store_true", help="Do not echo the activity feed")
    return parser.parse_args(argv)


def run_pipeline_cli(argv=None) -> int:
    args = parse_args(argv)

    print("\n" + "=" * 60)
    print("🤖 MULTI-AGENT STEP PIPELINE")
    print("=" * 60)

    try:
        workflow = load_workflow(args.workflow)
    except (OSError, ValueError) as e:
        print(f"\n❌ Could not read workflow file: {e}")
        return 2

    if args.scope:
        workflow['scope_directory'] = args.scope
    if args.output_dir:
        workflow['output_directory'] = args.output_dir

    config = PipelineConfig()
    if args.max_iterations is not None:
        config.max_iterations = args.max_iterations
    if args.threshold is not None:
        config.quality_threshold = args.threshold
    config.enable_conflict_resolution = args.resolve_conflicts
    config.enable_detailed_logging = not args.quiet

    try:
        project = WorkflowProject.from_dict(workflow)
    except OrchestrationError as e:
        print(f"\n❌ Invalid workflow: {e}")
        return 2

    loop = OrchestrationLoop(
        LLMAgentExecutor(config),
        prompt_assembly=build_prompt_assembly(workflow),
        project_store=InMemoryProjectStore([project]),
        config=config,
        reference_library=StaticReferenceLibrary(workflow.get('reference_documents')),
    )
    loop.run_logger.log_dir = args.log_dir
    loop.run_logger.experiment_name = project.id

    print(f"\n🚀 Starting workflow '{project.name or project.id}' ({len(project.graph)} steps)...")

    exit_code = 0
    try:
        report = loop.start(project.id, args.initial_input)

        print("\n📊 SESSION STATS:")
        print(f"  • State: {report.state.value}")
        print(f"  • Iterations: {report.iterations}")
        print(f"  • Completed: {len(report.completed_steps)}/{len(project.graph)}")
        if report.incomplete_steps:
            print(f"  • Incomplete: {', '.join(report.incomplete_steps)}")
        print(f"  • Attempts: {report.stats.get('total_attempts', 0)} "
              f"({report.stats.get('retry_attempts', 0)} retries)")
        print(f"  • Mean accepted quality: {report.stats.get('accepted_score_mean', 0):.2f}")

    except OrchestrationError as e:
        print(f"\n❌ {type(e).__name__}: {e}")
        exit_code = 1

    finally:
        loop.run_logger.save()

    return exit_code


if __name__ == "__main__":
    sys.exit(run_pipeline_cli())
