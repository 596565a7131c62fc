"""Configuration management for waf-deploy."""

from .models import (
    WAFConfig,
    ProjectConfig,
    RetryConfig,
    RegexPatternSetConfig,
    RegexMatchSetConfig,
    RegexMatchTupleConfig,
    FieldToMatchConfig,
)
from .parser import Config, ConfigValidationError

__all__ = [
    "WAFConfig",
    "ProjectConfig",
    "RetryConfig",
    "RegexPatternSetConfig",
    "RegexMatchSetConfig",
    "RegexMatchTupleConfig",
    "FieldToMatchConfig",
    "Config",
    "ConfigValidationError",
]
