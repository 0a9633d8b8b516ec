"""HTTP API - read endpoints and admin tick trigger."""

from clawfolio_runner.api.app import ADMIN_TOKEN_HEADER, API_VERSION, create_app, parse_limit

__all__ = [
    "ADMIN_TOKEN_HEADER",
    "API_VERSION",
    "create_app",
    "parse_limit",
]
