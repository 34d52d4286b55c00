"""Command-line interface for VoxStudio."""

from .commands import app

__all__ = ["app"]
