"""Domain services - core business logic."""

from .movement_index import MovementIndex

__all__ = ["MovementIndex"]
