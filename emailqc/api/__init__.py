"""FastAPI HTTP layer package.

Public re-export so callers can write::

    from emailqc.api import app

    uvicorn emailqc.api:app --reload
"""

from emailqc.api.app import app

__all__ = ["app"]
