"""Error taxonomy and classification for WAF operations."""

from typing import Optional, Dict, Any, List
from enum import Enum
from dataclasses import dataclass, asdict
from botocore.exceptions import (
    ClientError,
    NoCredentialsError,
    PartialCredentialsError,
    EndpointConnectionError,
    ConnectTimeoutError,
    ReadTimeoutError,
)
from waf_deploy.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorKind(Enum):
    """Retry classification of a failed WAF call."""
    STALE_TOKEN = "stale_token"
    CONCURRENT_MODIFICATION = "concurrent_modification"
    NOT_PROPAGATED = "not_propagated"
    THROTTLED = "throttled"
    FATAL = "fatal"


class ErrorCategory(Enum):
    """Categories of errors that can occur while provisioning."""
    CONFIGURATION = "configuration"
    AWS = "aws"
    NETWORK = "network"
    CHANGE_TOKEN = "change_token"
    PROVISIONING = "provisioning"
    CREDENTIAL = "credential"
    PERMISSION = "permission"
    RESOURCE_LIMIT = "resource_limit"
    VALIDATION = "validation"
    TIMEOUT = "timeout"
    CANCELED = "canceled"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    CRITICAL = "critical"  # Run cannot continue
    ERROR = "error"  # Resource failed but the run can continue
    WARNING = "warning"
    INFO = "info"


@dataclass
class ErrorContext:
    """Where a failure happened: target set, call and AWS request."""
    resource_id: Optional[str] = None
    resource_type: Optional[str] = None
    operation: Optional[str] = None
    aws_service: Optional[str] = None
    aws_operation: Optional[str] = None
    request_id: Optional[str] = None
    error_code: Optional[str] = None
    additional_info: Optional[Dict[str, Any]] = None


class WAFDeployError(Exception):
    """Base exception for waf-deploy errors.

    Subclasses pick their default ``category`` and ``severity`` as class
    attributes; both can still be overridden per instance.
    """

    category = ErrorCategory.UNKNOWN
    severity = ErrorSeverity.ERROR

    def __init__(
        self,
        message: str,
        category: Optional[ErrorCategory] = None,
        severity: Optional[ErrorSeverity] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
        suggestions: Optional[List[str]] = None
    ):
        """Initialize error.

        Args:
            message: Human-readable error message
            category: Error category (class default if omitted)
            severity: Error severity (class default if omitted)
            context: Where the error occurred
            cause: Original exception that caused this error
            suggestions: List of suggested fixes
        """
        super().__init__(message)
        self.message = message
        if category is not None:
            self.category = category
        if severity is not None:
            self.severity = severity
        self.context = context or ErrorContext()
        self.cause = cause
        self.suggestions = suggestions or []

    def to_user_message(self) -> str:
        """Render the error, its context and suggested fixes for the terminal."""
        lines = [f"❌ {self.severity.value.upper()}: {self.message}"]

        for label, value in (
            ('Resource', self.context.resource_id),
            ('Operation', self.context.operation),
            ('AWS call', self.context.aws_operation),
            ('Error code', self.context.error_code),
            ('Request ID', self.context.request_id),
        ):
            if value:
                lines.append(f"   {label}: {value}")
        if self.cause:
            lines.append(f"   Cause: {self.cause}")

        if self.suggestions:
            lines.append("\n💡 Suggested fixes:")
            lines.extend(f"   {i}. {s}" for i, s in enumerate(self.suggestions, 1))

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for the JSON log."""
        return {
            'type': type(self).__name__,
            'message': self.message,
            'category': self.category.value,
            'severity': self.severity.value,
            'context': asdict(self.context),
            'cause': str(self.cause) if self.cause else None,
            'suggestions': self.suggestions
        }


class RetryableError(WAFDeployError):
    """Base for errors an operation may raise to request another attempt.

    Subclasses set ``kind`` so they classify without an AWS error code.
    """

    kind = ErrorKind.STALE_TOKEN
    category = ErrorCategory.CHANGE_TOKEN
    severity = ErrorSeverity.WARNING


class StaleTokenError(RetryableError):
    """The change token was consumed or superseded by another caller."""

    kind = ErrorKind.STALE_TOKEN


class ConcurrentModificationError(RetryableError):
    """The remote API detected an overlapping write."""

    kind = ErrorKind.CONCURRENT_MODIFICATION


class NotPropagatedError(RetryableError):
    """The target entity is not visible yet after a prior create."""

    kind = ErrorKind.NOT_PROPAGATED


class FatalOperationError(WAFDeployError):
    """A non-retryable failure of a token-guarded operation."""

    category = ErrorCategory.AWS


class RetryTimeoutError(WAFDeployError):
    """The retry budget ran out while the operation kept failing transiently."""

    category = ErrorCategory.TIMEOUT


class RetryCanceledError(WAFDeployError):
    """The caller cancelled the retry loop."""

    category = ErrorCategory.CANCELED
    severity = ErrorSeverity.WARNING


class ConfigurationError(WAFDeployError):
    category = ErrorCategory.CONFIGURATION
    severity = ErrorSeverity.CRITICAL


class CredentialError(WAFDeployError):
    category = ErrorCategory.CREDENTIAL
    severity = ErrorSeverity.CRITICAL


class PermissionError(WAFDeployError):
    """The caller lacks an IAM permission for a WAF or STS action."""

    category = ErrorCategory.PERMISSION


class NetworkError(WAFDeployError):
    category = ErrorCategory.NETWORK


class ProvisioningError(WAFDeployError):
    """A set could not be created, read, updated or deleted as planned."""

    category = ErrorCategory.PROVISIONING


class ValidationError(WAFDeployError):
    category = ErrorCategory.VALIDATION


def get_error_code(error: Exception) -> Optional[str]:
    """Return the AWS error code of a ClientError, or None."""
    if isinstance(error, ClientError):
        return error.response.get('Error', {}).get('Code')
    return None


class ErrorHandler:
    """Classifies and wraps errors from WAF and other sources."""

    # AWS error codes grouped by retry classification
    RETRYABLE_ERROR_CODES = {
        'WAFStaleDataException': ErrorKind.STALE_TOKEN,
        'WAFOptimisticLockException': ErrorKind.CONCURRENT_MODIFICATION,
        'ConcurrentModificationException': ErrorKind.CONCURRENT_MODIFICATION,
        'OptimisticLockException': ErrorKind.CONCURRENT_MODIFICATION,
        'WAFUnavailableEntityException': ErrorKind.NOT_PROPAGATED,
        'ThrottlingException': ErrorKind.THROTTLED,
        'Throttling': ErrorKind.THROTTLED,
        'TooManyRequestsException': ErrorKind.THROTTLED,
        'RequestLimitExceeded': ErrorKind.THROTTLED,
        'WAFInternalErrorException': ErrorKind.THROTTLED,
        'ServiceUnavailable': ErrorKind.THROTTLED,
    }

    # Mapping of AWS error codes to error categories and suggestions
    AWS_ERROR_MAPPING = {
        'InvalidClientTokenId': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS credentials are invalid or expired',
            'suggestions': [
                'Check that your AWS credentials are correctly configured',
                'Verify credentials using: aws sts get-caller-identity',
            ]
        },
        'ExpiredToken': {
            'category': ErrorCategory.CREDENTIAL,
            'message': 'AWS session token has expired',
            'suggestions': [
                'Refresh your AWS session credentials',
                'Check if MFA token needs to be refreshed'
            ]
        },
        'AccessDeniedException': {
            'category': ErrorCategory.PERMISSION,
            'message': 'Access denied - insufficient permissions',
            'suggestions': [
                'Check IAM policies attached to your user/role',
                'WAF Classic mutations need waf:GetChangeToken as well as the update action',
                'Use waf-regional permissions when operating on a regional scope'
            ]
        },
        'AccessDenied': {
            'category': ErrorCategory.PERMISSION,
            'message': 'Access denied - insufficient permissions',
            'suggestions': [
                'Check IAM policies attached to your user/role',
                'Review service control policies (SCPs) if using AWS Organizations'
            ]
        },
        'WAFNonexistentItemException': {
            'category': ErrorCategory.PROVISIONING,
            'message': 'WAF entity does not exist',
            'suggestions': [
                'Verify the ID refers to an entity in the selected scope (global or regional)',
                'Check if the entity was deleted outside of waf-deploy'
            ]
        },
        'WAFNonEmptyEntityException': {
            'category': ErrorCategory.PROVISIONING,
            'message': 'WAF entity still has contents',
            'suggestions': [
                'Remove all patterns or tuples before deleting the set'
            ]
        },
        'WAFReferencedItemException': {
            'category': ErrorCategory.PROVISIONING,
            'message': 'WAF entity is still referenced by another entity',
            'suggestions': [
                'Delete or update the rules and match sets that reference it first'
            ]
        },
        'WAFDisallowedNameException': {
            'category': ErrorCategory.VALIDATION,
            'message': 'Name is not allowed or already in use',
            'suggestions': [
                'Use a different name for the entity'
            ]
        },
        'WAFLimitsExceededException': {
            'category': ErrorCategory.RESOURCE_LIMIT,
            'message': 'WAF entity limit exceeded',
            'suggestions': [
                'Delete unused WAF Classic entities',
                'Request a limit increase through AWS Support'
            ]
        },
        'WAFInvalidParameterException': {
            'category': ErrorCategory.VALIDATION,
            'message': 'Invalid parameter value',
            'suggestions': [
                'Check field_to_match types and text transformations',
                'Verify regex pattern set IDs are valid'
            ]
        },
        'WAFInvalidOperationException': {
            'category': ErrorCategory.VALIDATION,
            'message': 'Invalid operation',
            'suggestions': [
                'Check that INSERT targets absent items and DELETE targets present ones'
            ]
        },
    }

    # Exception class raised for each mapped category
    CATEGORY_ERRORS = {
        ErrorCategory.CREDENTIAL: CredentialError,
        ErrorCategory.PERMISSION: PermissionError,
        ErrorCategory.PROVISIONING: ProvisioningError,
        ErrorCategory.VALIDATION: ValidationError,
    }

    def __init__(self):
        self.logger = get_logger(__name__)

    def classify(self, error: Exception) -> ErrorKind:
        """Classify an error as one of the retryable kinds or FATAL.

        Args:
            error: The exception raised by a token fetch or operation

        Returns:
            The ErrorKind of the error
        """
        if isinstance(error, RetryableError):
            return error.kind

        code = get_error_code(error)
        if code is not None:
            return self.RETRYABLE_ERROR_CODES.get(code, ErrorKind.FATAL)

        return ErrorKind.FATAL

    def handle_exception(
        self,
        error: Exception,
        context: Optional[ErrorContext] = None
    ) -> WAFDeployError:
        """Handle an exception and convert to WAFDeployError.

        Args:
            error: The exception to handle
            context: Additional context about where the error occurred

        Returns:
            WAFDeployError with categorization and suggestions
        """
        context = context or ErrorContext()

        if isinstance(error, WAFDeployError):
            return error

        if isinstance(error, ClientError):
            return self._handle_aws_error(error, context)

        if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
            return self._handle_credential_error(error, context)

        if isinstance(error, (EndpointConnectionError, ConnectTimeoutError,
                              ReadTimeoutError, ConnectionError, TimeoutError)):
            return NetworkError(
                message=f'Network error: {str(error)}',
                context=context,
                cause=error,
                suggestions=[
                    'Check your internet connection',
                    'Verify network firewall rules allow AWS API access',
                ]
            )

        return WAFDeployError(
            message=str(error),
            category=ErrorCategory.UNKNOWN,
            severity=ErrorSeverity.ERROR,
            context=context,
            cause=error,
            suggestions=['Check logs for more details']
        )

    def _handle_aws_error(
        self,
        error: ClientError,
        context: ErrorContext
    ) -> WAFDeployError:
        error_code = error.response.get('Error', {}).get('Code', 'Unknown')
        error_message = error.response.get('Error', {}).get('Message', str(error))
        request_id = error.response.get('ResponseMetadata', {}).get('RequestId')

        context.request_id = request_id
        context.error_code = error_code
        context.aws_operation = context.aws_operation or error.operation_name

        error_info = self.AWS_ERROR_MAPPING.get(error_code)

        if error_info:
            error_class = self.CATEGORY_ERRORS.get(error_info['category'], WAFDeployError)
            return error_class(
                message=f"{error_info['message']}: {error_message}",
                category=error_info['category'],
                context=context,
                cause=error,
                suggestions=error_info['suggestions']
            )

        return WAFDeployError(
            message=f"AWS Error ({error_code}): {error_message}",
            category=ErrorCategory.AWS,
            severity=ErrorSeverity.ERROR,
            context=context,
            cause=error,
            suggestions=[
                'Check AWS documentation for this error code',
                f'AWS Request ID: {request_id}',
            ]
        )

    def _handle_credential_error(
        self,
        error: Exception,
        context: ErrorContext
    ) -> CredentialError:
        if isinstance(error, NoCredentialsError):
            return CredentialError(
                message='No AWS credentials found',
                context=context,
                cause=error,
                suggestions=[
                    'Configure AWS credentials using: aws configure',
                    'Set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY environment variables',
                    'Specify a profile with --profile flag'
                ]
            )

        return CredentialError(
            message='Incomplete AWS credentials',
            context=context,
            cause=error,
            suggestions=[
                'Ensure both access key ID and secret access key are provided',
                'Check credential configuration in ~/.aws/credentials',
            ]
        )

    def log_error(self, error: WAFDeployError):
        """Log an error with appropriate level.

        Args:
            error: The error to log
        """
        log_message = error.to_user_message()

        if error.severity in (ErrorSeverity.CRITICAL, ErrorSeverity.ERROR):
            self.logger.error(log_message)
        elif error.severity == ErrorSeverity.WARNING:
            self.logger.warning(log_message)
        else:
            self.logger.info(log_message)

        self.logger.debug(f"Error details: {error.to_dict()}")


# Global error handler instance
error_handler = ErrorHandler()
