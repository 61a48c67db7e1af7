"""
app/api/routers package marker.
"""

from app.api.routers.import_history import router as import_history_router
from app.api.routers.job_import import router as job_import_router

__all__ = [
    "import_history_router",
    "job_import_router",
]
