"""
API middleware: the JSON error envelope shared by every route.
"""
from homeserve.api.middleware.error_handler import register_exception_handlers

__all__ = ["register_exception_handlers"]
