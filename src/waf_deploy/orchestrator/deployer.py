"""Applies and destroys the WAF resources described in waf.yaml."""

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from waf_deploy.config.models import RegexMatchSetConfig, looks_like_waf_id
from waf_deploy.config.parser import Config
from waf_deploy.provisioners.base import BaseProvisioner, ChangeType, Resource
from waf_deploy.provisioners.regex_match_set import (
    RESOURCE_TYPE as MATCH_SET_TYPE,
    RegexMatchSetProvisioner,
    expand_field_to_match,
)
from waf_deploy.provisioners.regex_pattern_set import (
    RESOURCE_TYPE as PATTERN_SET_TYPE,
    RegexPatternSetProvisioner,
)
from waf_deploy.utils.aws_client import AWSClientManager
from waf_deploy.utils.errors import (
    ErrorContext,
    ProvisioningError,
    RetryCanceledError,
    WAFDeployError,
    error_handler,
)
from waf_deploy.utils.logging import LogContext, get_logger

logger = get_logger(__name__)


class ExecutionStatus(Enum):
    """Status of execution."""
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ResourceExecutionResult:
    """Result of executing a single resource."""

    resource_id: str
    resource_type: str
    status: ExecutionStatus
    change_type: Optional[ChangeType] = None
    resource: Optional[Resource] = None
    error: Optional[WAFDeployError] = None
    duration: float = 0.0  # seconds

    def is_success(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS

    def is_failed(self) -> bool:
        return self.status == ExecutionStatus.FAILED


@dataclass
class DeploymentResult:
    """Results of an apply or destroy run."""

    results: List[ResourceExecutionResult] = field(default_factory=list)
    duration: float = 0.0  # seconds

    @property
    def status(self) -> ExecutionStatus:
        if any(r.is_failed() for r in self.results):
            return ExecutionStatus.FAILED
        return ExecutionStatus.SUCCESS

    def is_success(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS

    def get_failed_resource_ids(self) -> List[str]:
        return [r.resource_id for r in self.results if r.is_failed()]

    def count(self, status: ExecutionStatus) -> int:
        return sum(1 for r in self.results if r.status == status)


ProgressCallback = Callable[[ResourceExecutionResult], None]


class WAFDeployer:
    """Creates, updates and deletes configured regex pattern and match sets.

    Pattern sets are applied before match sets because match set tuples
    reference pattern set IDs; destroy runs in the reverse order.
    """

    def __init__(
        self,
        config: Config,
        client_manager: AWSClientManager,
        cancel_event: Optional[threading.Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
        provisioners: Optional[Dict[str, BaseProvisioner]] = None
    ):
        """Initialize deployer.

        Args:
            config: Loaded configuration
            client_manager: AWS client manager
            cancel_event: Event that aborts in-progress retries when set
            progress_callback: Called with each resource result as it completes
            provisioners: Provisioners keyed by resource type (built from config if omitted)
        """
        self.config = config
        self.cancel_event = cancel_event or threading.Event()
        self.progress_callback = progress_callback

        if provisioners is None:
            project = config.model.project
            client = client_manager.waf_client(regional=project.regional, region=project.region)
            provisioners = {
                PATTERN_SET_TYPE: RegexPatternSetProvisioner(
                    client,
                    policy=config.model.retry_policy('regex_pattern_set'),
                    cancel_event=self.cancel_event
                ),
                MATCH_SET_TYPE: RegexMatchSetProvisioner(
                    client,
                    policy=config.model.retry_policy('regex_match_set'),
                    cancel_event=self.cancel_event
                ),
            }
        self.provisioners = provisioners

    @property
    def pattern_sets(self) -> BaseProvisioner:
        return self.provisioners[PATTERN_SET_TYPE]

    @property
    def match_sets(self) -> BaseProvisioner:
        return self.provisioners[MATCH_SET_TYPE]

    def apply(self) -> DeploymentResult:
        """Bring every configured set to its desired contents."""
        start = time.monotonic()
        result = DeploymentResult()
        pattern_set_ids: Dict[str, str] = {}

        for pattern_set in self.config.regex_pattern_sets:
            desired = Resource(
                id=pattern_set.name,
                type=PATTERN_SET_TYPE,
                physical_id=None,
                properties={
                    'Name': pattern_set.name,
                    'RegexPatternStrings': list(pattern_set.patterns),
                }
            )
            outcome = self._apply_resource(self.pattern_sets, desired)
            if outcome.is_success():
                pattern_set_ids[pattern_set.name] = outcome.resource.physical_id
            self._record(result, outcome)

        for match_set in self.config.regex_match_sets:
            missing = self._unresolved_references(match_set, pattern_set_ids)
            if missing:
                self._record(result, ResourceExecutionResult(
                    resource_id=match_set.name,
                    resource_type=MATCH_SET_TYPE,
                    status=ExecutionStatus.SKIPPED,
                    error=ProvisioningError(
                        f"Skipped: regex pattern set(s) {', '.join(missing)} failed to apply",
                        context=ErrorContext(resource_id=match_set.name,
                                             resource_type=MATCH_SET_TYPE)
                    )
                ))
                continue

            desired = self._build_match_set(match_set, pattern_set_ids)
            self._record(result, self._apply_resource(self.match_sets, desired))

        result.duration = time.monotonic() - start
        return result

    def destroy(self) -> DeploymentResult:
        """Delete every configured set, match sets first."""
        start = time.monotonic()
        result = DeploymentResult()

        for match_set in reversed(self.config.regex_match_sets):
            self._record(result, self._destroy_resource(self.match_sets, match_set.name))

        for pattern_set in reversed(self.config.regex_pattern_sets):
            self._record(result, self._destroy_resource(self.pattern_sets, pattern_set.name))

        result.duration = time.monotonic() - start
        return result

    def show(self) -> List[Resource]:
        """Return the current remote state of every configured set that exists."""
        resources = []
        for provisioner, names in (
            (self.pattern_sets, [p.name for p in self.config.regex_pattern_sets]),
            (self.match_sets, [m.name for m in self.config.regex_match_sets]),
        ):
            for name in names:
                physical_id = provisioner.find_by_name(name)
                if physical_id is None:
                    continue
                current = provisioner.get_current_state(physical_id)
                if current is not None:
                    resources.append(current)
        return resources

    def _apply_resource(self, provisioner: BaseProvisioner, desired: Resource) -> ResourceExecutionResult:
        start = time.monotonic()
        change_type = None

        with LogContext(logger, resource_id=desired.id, resource_type=desired.type):
            try:
                current = None
                physical_id = provisioner.find_by_name(desired.id)
                if physical_id:
                    current = provisioner.get_current_state(physical_id)

                plan = provisioner.plan(desired, current)
                change_type = plan.change_type
                logger.info(f"Planned {change_type.value} for {desired.type} {desired.id}")

                resource = provisioner.provision(plan)
                status = ExecutionStatus.SUCCESS
                error = None
            except RetryCanceledError:
                raise
            except Exception as e:
                resource = None
                status = ExecutionStatus.FAILED
                error = error_handler.handle_exception(
                    e, ErrorContext(resource_id=desired.id, resource_type=desired.type,
                                    operation='apply')
                )
                error_handler.log_error(error)

        return ResourceExecutionResult(
            resource_id=desired.id,
            resource_type=desired.type,
            status=status,
            change_type=change_type,
            resource=resource,
            error=error,
            duration=time.monotonic() - start
        )

    def _destroy_resource(self, provisioner: BaseProvisioner, name: str) -> ResourceExecutionResult:
        start = time.monotonic()

        with LogContext(logger, resource_id=name, resource_type=provisioner.resource_type):
            try:
                physical_id = provisioner.find_by_name(name)
                if physical_id is None:
                    logger.info(f"{provisioner.resource_type} {name} does not exist, nothing to delete")
                    return ResourceExecutionResult(
                        resource_id=name,
                        resource_type=provisioner.resource_type,
                        status=ExecutionStatus.SKIPPED,
                        change_type=ChangeType.NO_CHANGE
                    )

                resource = Resource(id=name, type=provisioner.resource_type,
                                    physical_id=physical_id, properties={'Name': name})
                provisioner.destroy(resource)
                status = ExecutionStatus.SUCCESS
                error = None
            except RetryCanceledError:
                raise
            except Exception as e:
                resource = None
                status = ExecutionStatus.FAILED
                error = error_handler.handle_exception(
                    e, ErrorContext(resource_id=name, resource_type=provisioner.resource_type,
                                    operation='destroy')
                )
                error_handler.log_error(error)

        return ResourceExecutionResult(
            resource_id=name,
            resource_type=provisioner.resource_type,
            status=status,
            change_type=ChangeType.DELETE,
            resource=resource,
            error=error,
            duration=time.monotonic() - start
        )

    def _record(self, result: DeploymentResult, outcome: ResourceExecutionResult) -> None:
        result.results.append(outcome)
        if self.progress_callback:
            self.progress_callback(outcome)

    @staticmethod
    def _unresolved_references(match_set: RegexMatchSetConfig,
                               pattern_set_ids: Dict[str, str]) -> List[str]:
        missing = []
        for match_tuple in match_set.tuples:
            ref = match_tuple.regex_pattern_set
            if ref not in pattern_set_ids and not looks_like_waf_id(ref) and ref not in missing:
                missing.append(ref)
        return missing

    @staticmethod
    def _build_match_set(match_set: RegexMatchSetConfig, pattern_set_ids: Dict[str, str]) -> Resource:
        tuples = []
        for match_tuple in match_set.tuples:
            ref = match_tuple.regex_pattern_set
            tuples.append({
                'FieldToMatch': expand_field_to_match(match_tuple.field_to_match.model_dump()),
                'RegexPatternSetId': pattern_set_ids.get(ref, ref),
                'TextTransformation': match_tuple.text_transformation,
            })

        return Resource(
            id=match_set.name,
            type=MATCH_SET_TYPE,
            physical_id=None,
            properties={'Name': match_set.name, 'RegexMatchTuples': tuples},
            dependencies=sorted({t['RegexPatternSetId'] for t in tuples})
        )
