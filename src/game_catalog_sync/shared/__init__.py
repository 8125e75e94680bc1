"""共有レイヤの公開インターフェース。"""

from .config import AppSettings, get_settings
from .exceptions import (
    AuthorizationError,
    BaseAppError,
    ConfigurationError,
    DomainError,
    ExternalServiceError,
    Result,
)
from .logging import bind_run_context, clear_run_context, configure_logging, get_logger
from .types import ExternalKey, GameID, Timestamp, ValueObject, as_utc, dto_dict, utc_now

__all__ = [
    "AppSettings",
    "get_settings",
    "configure_logging",
    "get_logger",
    "bind_run_context",
    "clear_run_context",
    "AuthorizationError",
    "BaseAppError",
    "ConfigurationError",
    "DomainError",
    "ExternalServiceError",
    "Result",
    "ValueObject",
    "dto_dict",
    "ExternalKey",
    "GameID",
    "Timestamp",
    "as_utc",
    "utc_now",
]
