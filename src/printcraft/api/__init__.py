"""HTTP surface of the generation pipeline."""

from .errors import ApiError, register_error_handlers

__all__ = ["ApiError", "register_error_handlers"]
