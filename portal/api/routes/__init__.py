"""Route modules exposed by the API package."""

from . import concerns, health

__all__ = ["concerns", "health"]
