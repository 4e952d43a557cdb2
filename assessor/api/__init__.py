"""
HTTP API Module.

FastAPI application with request-id tracking and structured grading errors.
"""

from assessor.api.app import configure_logging, create_app
from assessor.api.middleware import RequestIdMiddleware

__all__ = ["RequestIdMiddleware", "configure_logging", "create_app"]
