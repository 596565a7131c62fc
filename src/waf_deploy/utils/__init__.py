"""Utility modules for logging, AWS client management, retries and errors."""

from waf_deploy.utils.aws_client import AWSClientManager, AWSCredentials, AssumeRoleConfig
from waf_deploy.utils.retry import RetryPolicy, Backoff, execute_with_retry
from waf_deploy.utils.errors import (
    ErrorKind,
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    WAFDeployError,
    RetryableError,
    StaleTokenError,
    ConcurrentModificationError,
    NotPropagatedError,
    FatalOperationError,
    RetryTimeoutError,
    RetryCanceledError,
    ConfigurationError,
    CredentialError,
    PermissionError,
    NetworkError,
    ProvisioningError,
    ValidationError,
    ErrorHandler,
    error_handler
)
from waf_deploy.utils.logging import get_logger, setup_logging, LogContext

__all__ = [
    # AWS Client
    'AWSClientManager',
    'AWSCredentials',
    'AssumeRoleConfig',

    # Retry
    'RetryPolicy',
    'Backoff',
    'execute_with_retry',

    # Errors
    'ErrorKind',
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'WAFDeployError',
    'RetryableError',
    'StaleTokenError',
    'ConcurrentModificationError',
    'NotPropagatedError',
    'FatalOperationError',
    'RetryTimeoutError',
    'RetryCanceledError',
    'ConfigurationError',
    'CredentialError',
    'PermissionError',
    'NetworkError',
    'ProvisioningError',
    'ValidationError',
    'ErrorHandler',
    'error_handler',

    # Logging
    'get_logger',
    'setup_logging',
    'LogContext',
]
