"""VoxStudio - voice recording and multi-track studio CLI.

This package records voice takes, renders offline effects onto them and
plays saved takes back together as a small multi-track project.
"""

from .cli.commands import app

__version__ = "1.0.0"
__author__ = "PawnAI Team"

__all__ = ["app", "__version__"]
