"""
Municipal Innovation Strategy Platform
Entity Generator Assistant.

Drafting pipeline for one demand queue item:
    1. Read the item's prefilled_spec (working titles, ai_context)
    2. Render the entity_generator prompt
    3. Call LLM -> bilingual draft JSON
    4. Fall back to the working titles for any field the model left out
"""

import json
import logging
import re

logger = logging.getLogger(__name__)

DRAFT_FIELDS = ("title_en", "title_ar", "description_en", "description_ar")


class EntityGenerator:
    """AI-powered drafting of challenges, pilots, campaigns, events, programs and solutions."""

    def __init__(self, gateway=None, prompt_registry=None):
        self.gateway = gateway
        self.prompt_registry = prompt_registry

    def generate(self, item, plan, *, user: str = "system") -> dict:
        """
        Draft the entity a queue item asks for.

        Args:
            item: DemandQueueItem being processed.
            plan: Owning StrategicPlan.

        Returns:
            dict: draft ({title_en, title_ar, description_en, description_ar}), error
        """
        result = {"draft": None, "error": None}
        spec = dict(item.prefilled_spec or {})
        ai_context = spec.get("ai_context") or {}

        if not self.prompt_registry:
            result["error"] = "Prompt registry not available"
            return result
        if not self.gateway:
            result["error"] = "LLM Gateway not available"
            return result

        try:
            messages = self.prompt_registry.render(
                "entity_generator",
                entity_type=item.entity_type,
                plan_name=ai_context.get("plan_name") or plan.name_en,
                objective_text=ai_context.get("objective_text") or plan.name_en,
                title_en=spec.get("title_en") or "",
                title_ar=spec.get("title_ar") or "",
                context=json.dumps(
                    {k: v for k, v in spec.items() if k not in ("title_en", "title_ar", "ai_context")},
                    ensure_ascii=False, default=str,
                ),
            )
        except KeyError:
            result["error"] = "entity_generator prompt template not found"
            return result

        try:
            llm_response = self.gateway.chat(
                messages,
                purpose="entity_generator",
                user=user,
                strategic_plan_id=plan.id,
            )
        except RuntimeError as exc:
            logger.error("EntityGenerator LLM call failed for queue item %s: %s", item.id, exc)
            result["error"] = f"AI generation failed: {exc}"
            return result

        parsed = self._parse_response(llm_response.get("content", ""))
        if not parsed:
            result["error"] = "AI response could not be parsed"
            return result

        draft = {field: parsed.get(field) or spec.get(field) or "" for field in DRAFT_FIELDS}
        if not draft["title_en"]:
            result["error"] = "AI draft has no English title"
            return result
        result["draft"] = draft
        return result

    @staticmethod
    def _parse_response(content: str) -> dict:
        """Parse LLM JSON response, tolerating markdown fences and leading prose."""
        cleaned = (content or "").strip()
        if cleaned.startswith("```"):
            cleaned = re.sub(r"^```\w*\n?", "", cleaned)
            cleaned = re.sub(r"\n?```$", "", cleaned)

        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError:
            match = re.search(r"\{.*\}", cleaned, re.DOTALL)
            if not match:
                return {}
            try:
                parsed = json.loads(match.group())
            except json.JSONDecodeError:
                return {}
        return parsed if isinstance(parsed, dict) else {}
