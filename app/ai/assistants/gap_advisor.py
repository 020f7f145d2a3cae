"""
Municipal Innovation Strategy Platform
Gap Advisor Assistant.

Turns a gap-analysis report into a short narrative and a prioritised list
of recommended actions. Used only for ``analysis_depth="comprehensive"``.
"""

import json
import logging
import re

logger = logging.getLogger(__name__)


class GapAdvisor:
    def __init__(self, gateway=None, prompt_registry=None):
        self.gateway = gateway
        self.prompt_registry = prompt_registry

    def recommend(self, plan, report: dict, *, version: str = "v1", user: str = "system") -> dict:
        """
        Returns:
            dict: summary, recommendations (list of {kind, priority, action}), error
        """
        result = {"summary": "", "recommendations": [], "error": None}
        if not self.prompt_registry or not self.gateway:
            result["error"] = "AI services not available"
            return result

        gaps = report.get("gaps", {})
        messages = self.prompt_registry.render(
            "gap_advisor",
            version=version,
            plan_name=plan.name_en,
            overall_coverage_pct=report.get("overall_coverage_pct", 0),
            entity_coverage=json.dumps(report.get("entity_coverage", {}), indent=2),
            priority_order=", ".join(gaps.get("priority_order", [])) or "none",
            quantity_gaps=json.dumps(gaps.get("quantity_gaps", {})),
        )
        try:
            llm_response = self.gateway.chat(
                messages, purpose="gap_advisor", user=user, strategic_plan_id=plan.id,
            )
        except RuntimeError as exc:
            logger.error("GapAdvisor LLM call failed for plan %s: %s", plan.id, exc)
            result["error"] = f"AI recommendation failed: {exc}"
            return result

        parsed = self._parse_response(llm_response.get("content", ""))
        result["summary"] = parsed.get("summary", "")
        if parsed.get("summary_ar"):
            result["summary_ar"] = parsed["summary_ar"]
        result["recommendations"] = [
            r for r in parsed.get("recommendations") or [] if isinstance(r, dict)
        ]
        return result

    @staticmethod
    def _parse_response(content: str) -> dict:
        cleaned = (content or "").strip()
        if cleaned.startswith("```"):
            cleaned = re.sub(r"^```\w*\n?", "", cleaned)
            cleaned = re.sub(r"\n?```$", "", cleaned)
        try:
            parsed = json.loads(cleaned)
        except json.JSONDecodeError:
            logger.warning("Failed to parse gap advisor response")
            return {"summary": cleaned[:500]}
        return parsed if isinstance(parsed, dict) else {}
