#!/usr/bin/env python3
"""
Municipal Innovation Strategy Platform - Demo Data Seed Script.

Creates one strategic plan with weighted objectives and action plans, a
handful of existing innovation entities, submits the plan (queueing the
flagged action plans) and materialises the remaining coverage gaps into
the demand queue.

Usage:
    python scripts/seed_demo_data.py
    python scripts/seed_demo_data.py --append
    python scripts/seed_demo_data.py --queue-limit 10
"""

import argparse
import sys

sys.path.insert(0, ".")

from app import create_app
from app.models import db
from app.models.demand_queue import DemandQueueItem
from app.models.innovation import ENTITY_MODELS
from app.models.strategy import StrategicPlan
from app.services import entity_service, gap_analysis_service, strategic_plan_service

DEMO_PLAN = {
    "name_en": "Smart City Innovation Strategy 2026-2030",
    "name_ar": "استراتيجية الابتكار للمدينة الذكية 2026-2030",
    "description_en": "Municipal innovation roadmap focused on mobility, services and sustainability.",
    "start_year": 2026,
    "end_year": 2030,
    "objectives": [
        {"id": "obj-1", "title_en": "Digitise citizen services",
         "title_ar": "رقمنة خدمات المواطنين", "weight": 40},
        {"id": "obj-2", "title_en": "Reduce traffic congestion",
         "title_ar": "تقليل الازدحام المروري", "weight": 35},
        {"id": "obj-3", "title_en": "Lower municipal energy use",
         "title_ar": "خفض استهلاك الطاقة البلدية", "weight": 25},
    ],
    "cascade_config": {
        "challenges_per_objective": 3,
        "pilots_per_challenge": 1,
        "campaigns_per_objective": 1,
        "events_per_objective": 2,
    },
    "action_plans": [
        {"name_en": "Open data hackathon", "name_ar": "هاكاثون البيانات المفتوحة",
         "type": "event", "priority": "high", "objective_index": 0,
         "should_create_entity": True, "owner": "Innovation Office"},
        {"name_en": "Smart parking accelerator", "name_ar": "مسرّع المواقف الذكية",
         "type": "program", "priority": "medium", "objective_index": 1,
         "should_create_entity": True},
        {"name_en": "Annual energy report", "type": "report", "priority": "low",
         "objective_index": 2, "should_create_entity": False},
    ],
}

DEMO_ENTITIES = [
    ("challenge", {"title_en": "Long waiting times at service centres",
                   "title_ar": "طول الانتظار في مراكز الخدمة",
                   "objective_id": "obj-1", "sector": "services"}),
    ("challenge", {"title_en": "Peak-hour congestion on ring road",
                   "title_ar": "الازدحام في ساعات الذروة على الطريق الدائري",
                   "objective_id": "obj-2", "sector": "mobility"}),
    ("campaign", {"title_en": "Go Digital awareness campaign",
                  "objective_id": "obj-1", "channel": "social"}),
    ("event", {"title_en": "Mobility innovation workshop",
               "objective_id": "obj-2", "event_type": "workshop"}),
]


def _clear():
    DemandQueueItem.query.delete()
    for model in ENTITY_MODELS.values():
        model.query.delete()
    StrategicPlan.query.delete()
    db.session.commit()
    print("🧹 Existing plans, entities and queue items removed")


def seed_demo(*, append=False, queue_limit=20, verbose=False):
    """Seed one demo plan and return it."""
    if not append:
        _clear()

    plan = strategic_plan_service.create_plan(DEMO_PLAN, created_by="seed")
    print(f"📋 Plan '{plan.name_en}' created (id={plan.id})")

    for entity_type, data in DEMO_ENTITIES:
        entity = entity_service.create_entity(entity_type, {**data, "strategic_plan_id": plan.id})
        if verbose:
            print(f"   ✅ {entity_type} #{entity.id}: {entity.title_en}")
    print(f"🧩 {len(DEMO_ENTITIES)} existing entities linked")

    plan, queued = strategic_plan_service.submit_plan(plan.id, submitted_by="seed")
    print(f"📨 Plan submitted; {len(queued)} action plans queued")

    result = gap_analysis_service.generate_queue(plan.id, queue_limit, user="seed")
    report = result["analysis"]
    print(f"📊 Overall coverage: {report['overall_coverage_pct']}%")
    for kind, gap in report["gaps"]["quantity_gaps"].items():
        print(f"   {kind:<10} gap={gap}")
    print(f"📥 {len(result['created'])} gap items queued")
    if verbose:
        for item in result["created"]:
            print(f"   [{item.priority_score:>4}] {item.entity_type:<10} {item.title}")
    return plan


def main():
    parser = argparse.ArgumentParser(description="Seed demo strategy data")
    parser.add_argument("--append", action="store_true", help="Keep existing rows")
    parser.add_argument("--queue-limit", type=int, default=20)
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args()

    app = create_app()
    print(f"🎯 DB: {app.config['SQLALCHEMY_DATABASE_URI']}\n")
    with app.app_context():
        db.create_all()
        seed_demo(append=args.append, queue_limit=args.queue_limit, verbose=args.verbose)


if __name__ == "__main__":
    main()
