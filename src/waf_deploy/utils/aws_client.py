"""boto3 sessions and clients for the WAF Classic APIs."""

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from typing import Optional, Dict, Any, Tuple
from dataclasses import dataclass
from waf_deploy.utils.errors import ErrorContext, error_handler
from waf_deploy.utils.logging import get_logger

logger = get_logger(__name__)

# WAF Classic global resources (CloudFront) live in us-east-1
GLOBAL_WAF_REGION = 'us-east-1'


@dataclass
class AWSCredentials:
    """Identity the WAF calls will be made as."""
    account_id: str
    arn: str
    region: Optional[str]
    profile: Optional[str] = None
    role_arn: Optional[str] = None

    @property
    def assumed(self) -> bool:
        return self.role_arn is not None


@dataclass
class AssumeRoleConfig:
    """Role to assume before touching WAF, e.g. in a shared security account."""
    role_arn: str
    session_name: str = 'waf-deploy'
    external_id: Optional[str] = None
    duration_seconds: int = 3600

    def to_request(self) -> Dict[str, Any]:
        request = {
            'RoleArn': self.role_arn,
            'RoleSessionName': self.session_name,
            'DurationSeconds': self.duration_seconds,
        }
        if self.external_id:
            request['ExternalId'] = self.external_id
        return request


def account_from_arn(arn: str) -> str:
    # arn:partition:service:region:account:resource
    return arn.split(':')[4]


class AWSClientManager:
    """Hands out cached ``waf`` / ``waf-regional`` clients for one identity."""

    def __init__(
        self,
        profile: Optional[str] = None,
        region: Optional[str] = None,
        assume_role_config: Optional[AssumeRoleConfig] = None,
        max_pool_connections: int = 10,
        session: Optional[boto3.Session] = None
    ):
        """Initialize AWS client manager.

        Args:
            profile: AWS profile name to use
            region: Default region for regional clients
            assume_role_config: Role assumed by ``assume_role()`` when called without one
            max_pool_connections: Connection pool size per client
            session: Pre-built boto3 session (skips profile/region lookup)
        """
        self.profile = profile
        self.region = region
        self.assume_role_config = assume_role_config
        self._session: Optional[boto3.Session] = session
        self._assumed_session: Optional[boto3.Session] = None
        self._clients: Dict[Tuple[str, Optional[str]], Any] = {}
        self._credentials: Optional[AWSCredentials] = None

        # botocore's own retries only cover the HTTP layer; change token
        # conflicts are retried by ChangeTokenRetryer
        self._boto_config = Config(
            max_pool_connections=max_pool_connections,
            retries={'mode': 'standard', 'max_attempts': 3},
            connect_timeout=10,
            read_timeout=60
        )

    @property
    def session(self) -> boto3.Session:
        """Base session built from the profile and region."""
        if self._session is None:
            kwargs = {}
            if self.profile:
                kwargs['profile_name'] = self.profile
            if self.region:
                kwargs['region_name'] = self.region
            self._session = boto3.Session(**kwargs)
            logger.debug(f"Created AWS session (profile {self.profile or 'default'}, "
                         f"region {self._session.region_name})")
        return self._session

    @property
    def active_session(self) -> boto3.Session:
        return self._assumed_session or self.session

    def get_client(self, service_name: str, region: Optional[str] = None):
        """Return a cached client from the active session."""
        key = (service_name, region)
        client = self._clients.get(key)
        if client is None:
            kwargs = {'config': self._boto_config}
            if region:
                kwargs['region_name'] = region
            client = self.active_session.client(service_name, **kwargs)
            self._clients[key] = client
            logger.debug(f"Created {service_name} client for region {client.meta.region_name}")
        return client

    def waf_client(self, regional: bool = False, region: Optional[str] = None):
        """Get the WAF Classic client for the requested scope.

        Args:
            regional: Use ``waf-regional`` (ALB/API Gateway) instead of global ``waf``
            region: Region for the regional client

        Returns:
            Boto3 ``waf`` or ``waf-regional`` client
        """
        if regional:
            return self.get_client('waf-regional', region=region or self.region)
        return self.get_client('waf', region=GLOBAL_WAF_REGION)

    def validate_credentials(self) -> AWSCredentials:
        """Resolve the caller identity once through STS.

        Raises:
            CredentialError: If no usable credentials are configured
            WAFDeployError: If STS rejects the credentials
        """
        if self._credentials is not None:
            return self._credentials

        try:
            identity = self.get_client('sts').get_caller_identity()
        except (BotoCoreError, ClientError) as e:
            raise error_handler.handle_exception(
                e, ErrorContext(aws_service='sts', operation='validate_credentials')
            ) from e

        self._credentials = AWSCredentials(
            account_id=identity['Account'],
            arn=identity['Arn'],
            region=self.region or self.active_session.region_name,
            profile=self.profile
        )
        logger.info(f"Using AWS account {self._credentials.account_id} as {self._credentials.arn}")
        return self._credentials

    def assume_role(self, config: Optional[AssumeRoleConfig] = None) -> AWSCredentials:
        """Switch every client handed out from now on to an assumed role.

        Raises:
            ValueError: If no role is configured
            WAFDeployError: If STS refuses the role
        """
        config = config or self.assume_role_config
        if config is None:
            raise ValueError("No assume role configuration provided")

        logger.info(f"Assuming IAM role {config.role_arn}")
        try:
            response = self.get_client('sts').assume_role(**config.to_request())
        except (BotoCoreError, ClientError) as e:
            raise error_handler.handle_exception(
                e, ErrorContext(aws_service='sts', operation='assume_role',
                                resource_id=config.role_arn)
            ) from e

        credentials = response['Credentials']
        self._assumed_session = boto3.Session(
            aws_access_key_id=credentials['AccessKeyId'],
            aws_secret_access_key=credentials['SecretAccessKey'],
            aws_session_token=credentials['SessionToken'],
            region_name=self.region or self.session.region_name
        )
        # Clients built from the base session must not be reused
        self._clients.clear()

        assumed_arn = response['AssumedRoleUser']['Arn']
        self._credentials = AWSCredentials(
            account_id=account_from_arn(assumed_arn),
            arn=assumed_arn,
            region=self._assumed_session.region_name,
            profile=self.profile,
            role_arn=config.role_arn
        )
        logger.info(f"Assumed role in account {self._credentials.account_id}")
        return self._credentials

    def clear_cache(self):
        """Drop cached clients, the assumed session and the resolved identity."""
        self._clients.clear()
        self._assumed_session = None
        self._credentials = None
