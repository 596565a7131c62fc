"""Apply/destroy orchestration for configured WAF resources."""

from waf_deploy.orchestrator.deployer import (
    WAFDeployer,
    DeploymentResult,
    ResourceExecutionResult,
    ExecutionStatus,
)

__all__ = [
    'WAFDeployer',
    'DeploymentResult',
    'ResourceExecutionResult',
    'ExecutionStatus',
]
