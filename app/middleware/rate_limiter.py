"""
Rate limiting configuration.

The Limiter instance is created in app/__init__.py with no default limits;
this module applies limits per blueprint. AI-backed routes additionally
carry a shared ``ai_generate`` limit declared in their blueprints.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Plan, queue and entity endpoints: 60/minute
        - Health checks: exempt
        - AI endpoints: AI_RATE_LIMIT (default 10/minute), set per route

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("strategy", "demand_queue"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    bp = app.blueprints.get("entities")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health_bp")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: AI %s, write %s, read %s",
        app.config.get("AI_RATE_LIMIT", "10/minute"), WRITE_LIMIT, READ_LIMIT,
    )
