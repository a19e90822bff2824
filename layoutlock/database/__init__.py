"""
Database module for the quota store
"""
from .models import Base, DesignGenerationUsage, RateLimitCounter, utc_now

__all__ = [
    "Base",
    "DesignGenerationUsage",
    "RateLimitCounter",
    "utc_now",
]
