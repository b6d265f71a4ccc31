"""Database layer package.

Public re-exports so callers can write::

    from emailqc.db import get_connection, init_db
    from emailqc.db import runs
"""

from emailqc.db.connection import get_connection
from emailqc.db.migrations import init_db
from emailqc.db import rules, runs

__all__ = ["get_connection", "init_db", "rules", "runs"]
