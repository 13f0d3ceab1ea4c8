"""
Per-blueprint request limits (Flask-Limiter, keyed by remote address).

The Limiter in ``kpi_review/__init__.py`` has no default limit; limits are
attached here once the blueprints are registered. Nothing is limited under
TESTING.
"""

import logging

logger = logging.getLogger(__name__)

# blueprint name -> limit; None exempts the blueprint
BLUEPRINT_LIMITS = {
    "kpis": "60/minute",
    "discrepancies": "200/minute",
    "health_bp": None,
}


def init_rate_limits(app, limiter):
    if app.config.get("TESTING"):
        return

    applied = {}
    for name, limit in BLUEPRINT_LIMITS.items():
        bp = app.blueprints.get(name)
        if bp is None:
            continue
        if limit is None:
            limiter.exempt(bp)
        else:
            limiter.limit(limit)(bp)
        applied[name] = limit or "exempt"
    logger.info("Rate limits applied: %s", applied)
