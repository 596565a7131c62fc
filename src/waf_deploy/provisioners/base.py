"""Base provisioner interface for WAF Classic resources."""

import threading
from abc import ABC, abstractmethod
from typing import Optional
from dataclasses import dataclass, field
from enum import Enum

from botocore.exceptions import ClientError

from waf_deploy.utils.errors import ErrorContext, ProvisioningError, get_error_code
from waf_deploy.utils.logging import get_logger
from waf_deploy.utils.retry import RetryPolicy, execute_with_retry
from waf_deploy.waf.retryer import ChangeTokenRetryer

logger = get_logger(__name__)


class ChangeType(Enum):
    """Type of change for a resource."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    NO_CHANGE = "no_change"


@dataclass
class Resource:
    """Represents a WAF Classic resource.

    ``id`` is the logical name from configuration, ``physical_id`` the
    WAF-assigned entity ID.
    """
    id: str
    type: str
    physical_id: Optional[str]
    properties: dict
    dependencies: list = field(default_factory=list)


@dataclass
class ProvisionPlan:
    """Plan for provisioning a resource."""
    resource: Resource
    change_type: ChangeType
    current_state: Optional[Resource]


class BaseProvisioner(ABC):
    """Base class for token-guarded WAF resource provisioners."""

    resource_type = ''

    def __init__(
        self,
        waf_client,
        policy: Optional[RetryPolicy] = None,
        cancel_event: Optional[threading.Event] = None
    ):
        """Initialize provisioner.

        Args:
            waf_client: boto3 ``waf`` or ``waf-regional`` client
            policy: Retry policy for this resource type
            cancel_event: Event that aborts in-progress retries when set
        """
        self.client = waf_client
        self.policy = policy or RetryPolicy()
        self.cancel_event = cancel_event
        self.retryer = ChangeTokenRetryer(waf_client, self.policy)

    def plan(self, desired: Resource, current: Optional[Resource]) -> ProvisionPlan:
        """Determine what changes are needed for the resource.

        Args:
            desired: The desired state of the resource
            current: The current state of the resource (None if doesn't exist)

        Returns:
            ProvisionPlan describing the changes needed
        """
        if current is None:
            change_type = ChangeType.CREATE
        elif self.compute_updates(current, desired):
            change_type = ChangeType.UPDATE
        else:
            change_type = ChangeType.NO_CHANGE

        return ProvisionPlan(resource=desired, change_type=change_type, current_state=current)

    def provision(self, plan: ProvisionPlan) -> Resource:
        """Execute the provisioning plan.

        Returns:
            Resource with physical_id set
        """
        if plan.change_type == ChangeType.CREATE:
            return self.create(plan.resource)
        if plan.change_type == ChangeType.UPDATE:
            return self.update(plan.current_state, plan.resource)
        if plan.change_type == ChangeType.DELETE:
            self.destroy(plan.current_state or plan.resource)
            return plan.resource

        plan.resource.physical_id = plan.current_state.physical_id
        return plan.resource

    def import_resource(self, physical_id: str) -> Resource:
        """Read an existing entity by its WAF ID.

        Raises:
            ProvisioningError: If no entity has that ID
        """
        resource = self.get_current_state(physical_id)
        if resource is None:
            raise ProvisioningError(
                f"Cannot import {self.resource_type} {physical_id}: not found",
                context=ErrorContext(resource_id=physical_id,
                                     resource_type=self.resource_type,
                                     operation='import')
            )
        return resource

    def run_with_token(self, operation, operation_name: str, resource_id: Optional[str]):
        """Run a mutating call through the change-token retryer."""
        return self.retryer.retry_with_token(
            operation,
            operation_name=operation_name,
            resource_id=resource_id,
            cancel_event=self.cancel_event
        )

    def read(self, func, description: str, **kwargs) -> Optional[dict]:
        """Run a read call with throttling retries; None if the entity is gone."""
        try:
            return execute_with_retry(
                func,
                policy=self.policy,
                cancel_event=self.cancel_event,
                description=description,
                **kwargs
            )
        except ClientError as e:
            if get_error_code(e) == 'WAFNonexistentItemException':
                return None
            raise

    def list_all(self, func, key: str, description: str) -> list:
        """Collect every page of a WAF ``List*`` call."""
        items = []
        marker = None
        while True:
            kwargs = {'Limit': 100}
            if marker:
                kwargs['NextMarker'] = marker
            response = execute_with_retry(
                func,
                policy=self.policy,
                cancel_event=self.cancel_event,
                description=description,
                **kwargs
            )
            items.extend(response.get(key, []))
            marker = response.get('NextMarker')
            # WAF returns a marker on the last page when it was full
            if not marker or not response.get(key):
                return items

    @abstractmethod
    def compute_updates(self, current: Resource, desired: Resource) -> list:
        """Return the WAF ``Updates`` list turning current into desired."""

    @abstractmethod
    def create(self, resource: Resource) -> Resource:
        """Create the entity and fill its contents."""

    @abstractmethod
    def update(self, current: Resource, desired: Resource) -> Resource:
        """Apply the difference between current and desired contents."""

    @abstractmethod
    def destroy(self, resource: Resource) -> None:
        """Empty and delete the entity; a missing entity is not an error."""

    @abstractmethod
    def get_current_state(self, physical_id: str) -> Optional[Resource]:
        """Fetch current state from WAF, or None if the entity doesn't exist."""

    @abstractmethod
    def find_by_name(self, name: str) -> Optional[str]:
        """Return the WAF ID of the entity with this name, if any."""
