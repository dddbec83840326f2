"""
nodedeploy CLI Base Command Classes

Abstract base classes for consistent command structure.
"""

from .base_command import BaseCommand

__all__ = [
    "BaseCommand",
]
