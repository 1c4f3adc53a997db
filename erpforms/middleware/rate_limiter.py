"""
Rate limiting configuration.

The Limiter instance is created in erpforms/__init__.py with no default
limits; this module applies limits per blueprint:

    - Import endpoints:   10/minute  (whole-template delete-and-recreate)
    - Configuration API:  120/minute
    - Health check:       exempt

Usage:
    from erpforms.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

IMPORT_LIMIT = "10/minute"
API_LIMIT = "120/minute"

_CONFIG_BLUEPRINTS = ("templates", "workflows", "approval_groups")


def init_rate_limits(app, limiter):
    """Apply rate limits to API blueprints. Disabled in testing mode."""
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("template_transfer")
    if bp:
        limiter.limit(IMPORT_LIMIT)(bp)

    for bp_name in _CONFIG_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(API_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: import: %s, api: %s", IMPORT_LIMIT, API_LIMIT)
