"""finsync web route modules.

Each module exports a ``router`` (APIRouter) included by finsync.web.app.
"""
