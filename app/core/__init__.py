"""
Core module initialization.
Exports configuration, logging utilities and the engine error taxonomy.
"""

from app.core.config import get_settings, Settings, EnvironmentMode
from app.core.exceptions import (
    LedgerError,
    NotFoundError,
    InvalidArgumentError,
    AlreadyExistsError,
    InsufficientSupplyError,
    InternalError,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "LedgerError",
    "NotFoundError",
    "InvalidArgumentError",
    "AlreadyExistsError",
    "InsufficientSupplyError",
    "InternalError",
]
