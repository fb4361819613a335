"""
External collaborators of the orchestration engine.

Each collaborator is a narrow interface plus one plain implementation:
- OutputPersistence: save(step_id, content); failures are logged, never fatal
- PromptAssembly: get_base_prompt(step_id, step, project, options)
- ProjectStore: get_project(workflow_id)
- ReferenceLibrary: get_documents()
"""

import os
from typing import Dict, List, Optional

from orchestrator.errors import PersistError
from orchestrator.graph import WorkflowProject


class OutputPersistence:
    def save(self, step_id: str, content: str):
        """Persist one step's output, or raise PersistError."""
        raise NotImplementedError


class FileOutputPersistence(OutputPersistence):
    """Writes each step output to <directory>/<step_type or id>-output.md."""

    def __init__(self, directory: str, project: Optional[WorkflowProject] = None):
        self.directory = directory
        self.project = project

    def path_for(self, step_id: str) -> str:
        stem = step_id
        if self.project is not None:
            step = self.project.graph.get(step_id)
            if step is not None and step.step_type:
                stem = step.step_type
        return os.path.join(self.directory, f"{stem}-output.md")

    def save(self, step_id: str, content: str):
        if not self.directory:
            raise PersistError("No output directory set")
        path = self.path_for(step_id)
        try:
            os.makedirs(self.directory, exist_ok=True)
            with open(path, 'w', encoding='utf-8') as f:
                f.write(content)
        except OSError as e:
            raise PersistError(f"Failed to save {path}: {e}") from e


class PromptAssembly:
    def get_base_prompt(self, step_id: str, step, project: WorkflowProject, options: Dict) -> str:
        raise NotImplementedError


class TemplatePromptAssembly(PromptAssembly):
    """
    Per-step template text, keyed by step id (falling back to step_type).

    Templates are returned as-is; placeholder substitution belongs to the
    template loader, not the engine.
    """

    def __init__(self, templates: Dict[str, str], default_template: str = ""):
        self.templates = dict(templates)
        self.default_template = default_template

    def get_base_prompt(self, step_id: str, step, project: WorkflowProject, options: Dict) -> str:
        template = self.templates.get(step_id)
        if template is None and step is not None and step.step_type:
            template = self.templates.get(step.step_type)
        if template is None:
            template = self.default_template
        return template


class ProjectStore:
    def get_project(self, workflow_id: str) -> Optional[WorkflowProject]:
        raise NotImplementedError


class InMemoryProjectStore(ProjectStore):
    def __init__(self, projects: Optional[List[WorkflowProject]] = None):
        self._projects: Dict[str, WorkflowProject] = {}
        for project in projects or []:
            self.add(project)

    def add(self, project: WorkflowProject) -> WorkflowProject:
        self._projects[project.id] = project
        return project

    def get_project(self, workflow_id: str) -> Optional[WorkflowProject]:
        return self._projects.get(workflow_id)


class StaticReferenceLibrary:
    """Reference documents known up front ({name, content} dicts)."""

    def __init__(self, documents: Optional[List[Dict]] = None):
        self.documents = list(documents or [])

    def get_documents(self) -> List[Dict]:
        return list(self.documents)
