"""
POSECOACH Shared Module

Common utilities used across services.
"""

from .utils import setup_logger

__all__ = [
    'setup_logger',
]
