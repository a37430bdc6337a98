"""Code producer backed by an OpenAI chat model through LangChain."""

import json
import logging
import re
from typing import Any

from git_agent.core.tasks import clean_artifact
from git_agent.db.models import ProjectSpec, RepositoryRef, SetupRequest, Task
from git_agent.errors import GenerationError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
MIN_README_LENGTH = 100

_README_FENCE = re.compile(r"^```(?:markdown|md)?\s*\n|\n?```\s*$", re.IGNORECASE)

SPEC_PROMPT = """You are a software architect. Propose one software project as JSON.
{request_block}
Requirements:
- The project must be feasible for a single developer and implementable file by file.
- Pick a tech stack that suits the complexity level.
- Give realistic features and a timeline estimate.

Return ONLY a JSON object with exactly these keys:
{{"title": "...", "type": "Web App | CLI Tool | API | Library | Mobile App | Data Processing | Automation Script",
 "complexity": "...", "techStack": ["..."], "features": ["..."], "timeline": "...",
 "description": "...", "targetAudience": "..."}}"""

PLAN_PROMPT = """You are a project planner. Break this project into an ordered list of tasks.
Project:
{spec}

Requirements:
- Each task produces exactly one file and is worth its own commit.
- Order tasks so that dependencies come first.
- Give each task a file path that fits the project structure.
- Task titles must be unique.

Return ONLY a JSON object: {{"tasks": [{{"title": "...", "description": "...",
 "filePath": "path/to/file", "priority": "high|medium|low"}}]}}"""

ARTIFACT_PROMPT = """Generate the complete contents of one source file for this task.

Project type: {type}
Tech stack: {tech_stack}
Complexity: {complexity}

Task: {title}
Description: {description}
File path: {path}
Priority: {priority}

Rules:
- Output real, runnable code for this file only, following the tech stack.
- Include imports and error handling.
- No explanations, no markdown, no code fences. Only the file contents."""

STRICT_ARTIFACT_PROMPT = """Output ACTUAL CODE ONLY. No explanations, no descriptions, no markdown.

Task: {title}
File: {path}
Tech stack: {tech_stack}

The code must be functional and runnable as written."""

README_PROMPT = """Write the README.md for this repository in Markdown.

Project:
{spec}

Repository: {name}
URL: {url}

Include, in order: title, description, features, tech stack, installation
(commands in ```bash blocks), usage, testing, contributing and license sections.
Return only the README content."""


def _request_block(request: SetupRequest) -> str:
    lines = []
    if request.project_name:
        lines.append(f'The project title MUST be exactly "{request.project_name}".')
    lines.append(f"Complexity: {request.complexity}")
    lines.append(f"Tech stack constraints: {', '.join(request.tech_constraints) or 'none'}")
    if request.description:
        lines.append(f'The description and features MUST reflect: "{request.description}"')
    return "\n".join(lines)


def _parse_json(text: str, what: str) -> Any:
    try:
        return json.loads(clean_artifact(text))
    except ValueError as e:
        raise GenerationError(f"Model returned invalid JSON for the {what}") from e


class OpenAIProducer:
    """CodeProducer over langchain-openai.

    The chat model is created on first use, so commands that never generate
    anything do not need an API key.
    """

    def __init__(
        self,
        model_name: str = DEFAULT_MODEL,
        api_key: str | None = None,
        temperature: float = 0.0,
        chat_model=None,
    ):
        self.model_name = model_name
        self.api_key = api_key
        self.temperature = temperature
        self._chat_model = chat_model

    @property
    def chat_model(self):
        if self._chat_model is None:
            from langchain_openai import ChatOpenAI

            kwargs: dict[str, Any] = {"model": self.model_name, "temperature": self.temperature}
            if self.api_key:
                kwargs["api_key"] = self.api_key
            try:
                self._chat_model = ChatOpenAI(**kwargs)
            except Exception as e:
                raise GenerationError(f"Could not create chat model {self.model_name}: {e}") from e
        return self._chat_model

    def _invoke(self, prompt: str, json_mode: bool = False) -> str:
        model = self.chat_model
        if json_mode:
            model = model.bind(response_format={"type": "json_object"})
        try:
            response = model.invoke([("human", prompt)])
        except Exception as e:
            raise GenerationError(f"Model call failed: {e}") from e
        content = response.content if hasattr(response, "content") else response
        if not isinstance(content, str) or not content.strip():
            raise GenerationError("Model returned an empty response")
        return content

    def propose_spec(self, request: SetupRequest) -> ProjectSpec:
        text = self._invoke(SPEC_PROMPT.format(request_block=_request_block(request)), json_mode=True)
        data = _parse_json(text, "project spec")
        if isinstance(data, dict) and request.project_name:
            data["title"] = request.project_name
        try:
            return ProjectSpec.from_dict(data)
        except ValueError as e:
            raise GenerationError(f"Invalid project spec: {e}") from e

    def propose_plan(self, spec: ProjectSpec) -> list[Task]:
        text = self._invoke(PLAN_PROMPT.format(spec=json.dumps(spec.to_dict(), indent=2)), json_mode=True)
        data = _parse_json(text, "plan")
        if not isinstance(data, dict) or not isinstance(data.get("tasks"), list):
            raise GenerationError("Plan is missing its tasks list")

        tasks = []
        for item in data["tasks"]:
            try:
                tasks.append(Task.from_dict(item))
            except ValueError as e:
                logger.warning("Skipping malformed plan task: %s", e)
        logger.info("Model proposed %d tasks for %s", len(tasks), spec.title)
        return tasks

    def generate_artifact(self, spec: ProjectSpec, task: Task, strict: bool = False) -> str:
        values = {
            "type": spec.type,
            "tech_stack": ", ".join(spec.tech_stack),
            "complexity": spec.complexity,
            "title": task.title,
            "description": task.description,
            "path": task.target_path or "(choose one)",
            "priority": task.priority,
        }
        template = STRICT_ARTIFACT_PROMPT if strict else ARTIFACT_PROMPT
        return clean_artifact(self._invoke(template.format(**values)))

    def generate_readme(self, spec: ProjectSpec, repository: RepositoryRef) -> str:
        prompt = README_PROMPT.format(
            spec=json.dumps(spec.to_dict(), indent=2),
            name=repository.name,
            url=repository.url,
        )
        readme = _README_FENCE.sub("", self._invoke(prompt).strip()).strip()
        if len(readme) < MIN_README_LENGTH:
            raise GenerationError("Generated README is too short")
        return readme
