"""
Workflow service route modules.
"""

from .auto_jobs import router as auto_jobs_router

__all__ = ["auto_jobs_router"]
