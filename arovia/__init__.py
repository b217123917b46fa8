"""
Arovia Health Risk Package

A Clean Architecture implementation of lifestyle-aware health risk prediction.
"""

from arovia.container import Container, create_container
from arovia.main import create_app

__all__ = ["Container", "create_container", "create_app"]
