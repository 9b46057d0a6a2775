"""Groups domain exports."""

from .service import GroupService

__all__ = ["GroupService"]
