"""Workspace/project resolution and GitHub permission sync backend."""

__version__ = "0.1.0"
