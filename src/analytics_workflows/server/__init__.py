"""FastAPI server adapter for analytics-workflows.

Keep business logic in `analytics_workflows.engine.*`; routing and HTTP error
mapping live here.
"""

from __future__ import annotations

__all__ = ["create_app"]

from analytics_workflows.server.app import create_app
