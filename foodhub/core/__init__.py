"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from foodhub.core.config import get_settings, setup_logging, Settings, EnvironmentMode, NotificationDispatchMode
from foodhub.core.exceptions import (
    FoodHubError,
    ValidationError,
    NotFoundError,
    ConflictError,
    InvalidTransitionError,
    ConsistencyError,
    UpstreamError,
)

__all__ = [
    "get_settings",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "NotificationDispatchMode",
    "FoodHubError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "InvalidTransitionError",
    "ConsistencyError",
    "UpstreamError",
]
