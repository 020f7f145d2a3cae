"""
Municipal Innovation Strategy Platform
AI Assistants package.

Assistants:
    - entity_generator: queue item → bilingual entity draft
    - quality_assessor: draft → 0-100 quality score
    - gap_advisor: gap-analysis report → prioritised recommendations
"""

from app.ai.assistants.entity_generator import EntityGenerator
from app.ai.assistants.gap_advisor import GapAdvisor
from app.ai.assistants.quality_assessor import QualityAssessor

__all__ = [
    "EntityGenerator",
    "GapAdvisor",
    "QualityAssessor",
]
