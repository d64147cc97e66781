"""
Workflow Hub - Routes Package

API routers for the Workflow Hub.
"""

from .auth import router as auth_router
from .workflows import router as workflows_router, set_dependencies as set_workflows_deps

__all__ = [
    'auth_router',
    'workflows_router', 'set_workflows_deps',
]
