"""
Domain helpers for the ordering API.

Cross-cutting request concerns live here, such as caller identification
and authorization.
"""

from .auth_middleware import AuthMiddleware

__all__ = ["AuthMiddleware"]
