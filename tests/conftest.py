"""
Shared pytest fixtures for the strategy cascade test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - plan: Pre-created StrategicPlan with two weighted objectives
    - make_plan / make_item / make_entity: ORM factories
"""

import pytest

from app import create_app
from app.models import db as _db
from app.models.demand_queue import GENERATOR_COMPONENTS, DemandQueueItem
from app.models.innovation import ENTITY_MODELS
from app.models.strategy import StrategicPlan

TWO_OBJECTIVES = [
    {"id": "obj-1", "title_en": "Digitise citizen services", "title_ar": "رقمنة الخدمات", "weight": 60},
    {"id": "obj-2", "title_en": "Reduce congestion", "title_ar": "تقليل الازدحام", "weight": 40},
]


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


def _make_plan(**overrides):
    data = {
        "name_en": "Smart City Strategy",
        "name_ar": "استراتيجية المدينة الذكية",
        "status": "draft",
        "objectives": [dict(o) for o in TWO_OBJECTIVES],
        "cascade_config": {},
        "action_plans": [],
        "version_number": 1,
        "created_by": "tester",
    }
    data.update(overrides)
    plan = StrategicPlan(**data)
    _db.session.add(plan)
    _db.session.commit()
    return plan


def _make_item(plan, entity_type="challenge", **overrides):
    data = {
        "strategic_plan_id": plan.id,
        "entity_type": entity_type,
        "generator_component": GENERATOR_COMPONENTS.get(entity_type, ""),
        "status": "pending",
        "priority_score": 50,
        "prefilled_spec": {"title_en": f"Draft {entity_type}", "title_ar": "مسودة"},
        "attempts": 0,
        "created_by": "tester",
    }
    data.update(overrides)
    item = DemandQueueItem(**data)
    _db.session.add(item)
    _db.session.commit()
    return item


def _make_entity(plan, entity_type="challenge", **overrides):
    model = ENTITY_MODELS[entity_type]
    data = {
        "strategic_plan_id": plan.id if plan is not None else None,
        "title_en": f"Existing {entity_type}",
        "status": "draft",
    }
    data.update(overrides)
    entity = model(**data)
    _db.session.add(entity)
    _db.session.commit()
    return entity


@pytest.fixture()
def make_plan():
    return _make_plan


@pytest.fixture()
def make_item():
    return _make_item


@pytest.fixture()
def make_entity():
    return _make_entity


@pytest.fixture()
def plan():
    """A draft plan with two objectives and default cascade ratios."""
    return _make_plan()
