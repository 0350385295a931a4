"""
Utility modules package.
"""

from .timing import format_uptime, Stopwatch

__all__ = [
    'format_uptime',
    'Stopwatch',
]
