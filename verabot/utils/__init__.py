"""
VeraBot - Utilities Package
===========================

Small helpers shared by the services.
"""

from .time_format import utc_now_iso, to_iso

__all__ = ["utc_now_iso", "to_iso"]
