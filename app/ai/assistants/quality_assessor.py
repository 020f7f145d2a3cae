"""
Municipal Innovation Strategy Platform
Quality Assessor Assistant.

Scores a generated draft 0-100 against the objective it was queued for.
The score routes the queue item: at or above the acceptance threshold it
can be auto-accepted, below it goes to human review.
"""

import json
import logging
import re

logger = logging.getLogger(__name__)


class QualityAssessor:
    """LLM-backed scoring of drafted innovation entities."""

    def __init__(self, gateway=None, prompt_registry=None):
        self.gateway = gateway
        self.prompt_registry = prompt_registry

    def assess(
        self,
        entity_type: str,
        draft: dict,
        *,
        objective_text: str = "",
        strategic_plan_id: int | None = None,
        user: str = "system",
    ) -> dict:
        """
        Returns:
            dict: quality_score (0-100 or None), strengths, issues,
                  recommendation, error
        """
        result = {
            "quality_score": None,
            "strengths": [],
            "issues": [],
            "recommendation": None,
            "error": None,
        }

        if not self.prompt_registry or not self.gateway:
            result["error"] = "AI services not available"
            return result

        try:
            messages = self.prompt_registry.render(
                "quality_assessor",
                entity_type=entity_type,
                objective_text=objective_text or "not specified",
                draft=json.dumps(draft, ensure_ascii=False, indent=2, default=str),
            )
        except KeyError:
            result["error"] = "quality_assessor prompt template not found"
            return result
        try:
            llm_response = self.gateway.chat(
                messages,
                purpose="quality_assessor",
                user=user,
                strategic_plan_id=strategic_plan_id,
                temperature=0.0,
            )
        except RuntimeError as exc:
            logger.error("QualityAssessor LLM call failed: %s", exc)
            result["error"] = f"AI assessment failed: {exc}"
            return result

        parsed = self._parse_response(llm_response.get("content", ""))
        score = self._clamp_score(parsed.get("quality_score"))
        if score is None:
            result["error"] = "AI response did not contain a quality_score"
            return result

        result.update({
            "quality_score": score,
            "strengths": list(parsed.get("strengths") or []),
            "issues": list(parsed.get("issues") or []),
            "recommendation": parsed.get("recommendation"),
        })
        return result

    @staticmethod
    def _clamp_score(value) -> int | None:
        try:
            score = int(round(float(value)))
        except (TypeError, ValueError):
            return None
        return max(0, min(100, score))

    @staticmethod
    def _parse_response(content: str) -> dict:
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
