"""
Municipal Innovation Strategy Platform
Prompt Registry.

YAML-based prompt template management with:
    - Template loading from ai_knowledge/prompts/
    - {{variable}} rendering
    - Version tracking

Built-in defaults cover every assistant; a YAML file with the same
name/version overrides the default.

Usage:
    from app.ai.prompt_registry import PromptRegistry
    registry = PromptRegistry()
    messages = registry.render("entity_generator", entity_type="challenge", ...)
"""

import logging
import os
import re
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_PROMPTS_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(__file__))),
    "ai_knowledge", "prompts",
)


class PromptTemplate:
    """A single prompt template with metadata."""

    def __init__(self, name: str, version: str, system: str, user: str,
                 description: str = "", metadata: dict | None = None):
        self.name = name
        self.version = version
        self.system = system
        self.user = user
        self.description = description
        self.metadata = metadata or {}

    def render(self, **variables) -> list[dict]:
        """
        Render template with variables, returning chat messages.

        Unknown placeholders are left untouched.
        """
        system_rendered = self._substitute(self.system, variables)
        user_rendered = self._substitute(self.user, variables)

        messages = []
        if system_rendered.strip():
            messages.append({"role": "system", "content": system_rendered})
        if user_rendered.strip():
            messages.append({"role": "user", "content": user_rendered})
        return messages

    @staticmethod
    def _substitute(template: str, variables: dict) -> str:
        def replacer(match):
            key = match.group(1).strip()
            return str(variables.get(key, f"{{{{{key}}}}}"))
        return re.sub(r"\{\{(\s*\w+\s*)\}\}", replacer, template)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "system_preview": self.system[:200],
            "user_preview": self.user[:200],
        }


class PromptRegistry:
    """Registry for loading and managing prompt templates."""

    def __init__(self, prompts_dir: str | None = None):
        self._prompts_dir = prompts_dir or _PROMPTS_DIR
        self._templates: dict[str, dict[str, PromptTemplate]] = {}  # name → {version → template}
        for tpl in _DEFAULT_TEMPLATES:
            self._register(tpl)
        self._load_from_dir()

    def _load_from_dir(self):
        prompts_path = Path(self._prompts_dir)
        if not prompts_path.exists():
            logger.info("Prompts directory not found: %s. Using defaults only.", self._prompts_dir)
            return

        for yaml_file in sorted(prompts_path.glob("*.yaml")):
            try:
                with open(yaml_file, "r", encoding="utf-8") as f:
                    data = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                logger.error("Failed to load prompt %s: %s", yaml_file.name, e)
                continue
            if not data or not isinstance(data, dict):
                continue

            tpl = PromptTemplate(
                name=data.get("name", yaml_file.stem),
                version=str(data.get("version", "v1")),
                system=data.get("system", ""),
                user=data.get("user", ""),
                description=data.get("description", ""),
                metadata=data.get("metadata", {}),
            )
            self._register(tpl)
            logger.info("Loaded prompt template: %s (%s) from %s",
                        tpl.name, tpl.version, yaml_file.name)

    def _register(self, template: PromptTemplate):
        self._templates.setdefault(template.name, {})[template.version] = template

    def get(self, name: str, version: str = "v1") -> PromptTemplate | None:
        return self._templates.get(name, {}).get(version)

    def render(self, name: str, version: str = "v1", **variables) -> list[dict]:
        """
        Render a prompt template with variables.

        Raises:
            KeyError: If template not found.
        """
        tpl = self.get(name, version)
        if not tpl:
            raise KeyError(f"Prompt template not found: {name} {version}")
        return tpl.render(**variables)

    def list_templates(self) -> list[dict]:
        return [
            tpl.to_dict()
            for versions in self._templates.values()
            for tpl in versions.values()
        ]

    def get_versions(self, name: str) -> list[str]:
        return list(self._templates.get(name, {}).keys())


# ── Built-in Default Templates ────────────────────────────────────────────────

_DEFAULT_TEMPLATES = [
    PromptTemplate(
        name="entity_generator",
        version="v1",
        description="Draft a plan-linked innovation entity from a demand queue item",
        system=(
            "You draft municipal innovation portfolio items (challenges, pilots, "
            "campaigns, events, programs, solutions) for a city strategy office. "
            "Every draft must serve the named strategic objective, be realistic for "
            "a municipality, and be bilingual (English and Arabic).\n\n"
            "Return valid JSON with keys: title_en, title_ar, description_en, description_ar."
        ),
        user=(
            "Draft a {{entity_type}}.\n\n"
            "Plan: {{plan_name}}\n"
            "Objective: {{objective_text}}\n"
            "Working title (EN): {{title_en}}\n"
            "Working title (AR): {{title_ar}}\n\n"
            "Additional context:\n{{context}}"
        ),
    ),
    PromptTemplate(
        name="quality_assessor",
        version="v1",
        description="Score a drafted entity 0-100 against its objective",
        system=(
            "You are a quality reviewer for a municipal innovation strategy office. "
            "Score the draft from 0 to 100 on alignment with the objective, clarity, "
            "feasibility and completeness of both languages.\n\n"
            "Return valid JSON with keys: quality_score (integer 0-100), strengths (list), "
            "issues (list), recommendation (accept | revise)."
        ),
        user=(
            "Entity type: {{entity_type}}\n"
            "Objective: {{objective_text}}\n\n"
            "Draft:\n{{draft}}"
        ),
    ),
    PromptTemplate(
        name="gap_advisor",
        version="v1",
        description="Summarise cascade coverage gaps and recommend next actions",
        system=(
            "You advise a municipal strategy office on coverage gaps between its "
            "strategic plan and the innovation portfolio that should implement it. "
            "Be concrete and prioritise the largest gaps.\n\n"
            "Return valid JSON with keys: summary (string), recommendations "
            "(list of {kind, priority, action})."
        ),
        user=(
            "Plan: {{plan_name}}\n"
            "Overall coverage: {{overall_coverage_pct}}%\n\n"
            "Entity coverage:\n{{entity_coverage}}\n\n"
            "Quantity gaps (largest first): {{priority_order}}\n{{quantity_gaps}}"
        ),
    ),
]
