"""Tests for AWSClientManager client selection and STS identity handling."""

from __future__ import annotations

from datetime import datetime, timezone

import boto3
import pytest
from botocore.stub import Stubber

from waf_deploy.utils.aws_client import (
    GLOBAL_WAF_REGION,
    AWSClientManager,
    AssumeRoleConfig,
    account_from_arn,
)
from waf_deploy.utils.errors import CredentialError, PermissionError

ROLE_ARN = "arn:aws:iam::210987654321:role/waf-admin"


@pytest.fixture
def manager() -> AWSClientManager:
    session = boto3.Session(
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        region_name="eu-west-1",
    )
    return AWSClientManager(region="eu-west-1", session=session)


def test_global_scope_uses_waf_in_us_east_1(manager) -> None:
    client = manager.waf_client()

    assert client.meta.service_model.service_name == "waf"
    # Newer botocore reports the global endpoint as aws-global
    assert client.meta.region_name in {GLOBAL_WAF_REGION, "aws-global"}
    assert manager.get_client("waf", region=GLOBAL_WAF_REGION) is client
    assert manager.waf_client() is client


def test_regional_scope_uses_waf_regional(manager) -> None:
    default = manager.waf_client(regional=True)
    other = manager.waf_client(regional=True, region="ap-southeast-2")

    assert default.meta.service_model.service_name == "waf-regional"
    assert default.meta.region_name == "eu-west-1"
    assert other.meta.region_name == "ap-southeast-2"


def test_validate_credentials_calls_sts_once(manager) -> None:
    with Stubber(manager.get_client("sts")) as stubber:
        stubber.add_response("get_caller_identity", {
            "Account": "123456789012",
            "Arn": "arn:aws:iam::123456789012:user/deployer",
            "UserId": "AIDAEXAMPLE",
        })

        first = manager.validate_credentials()
        second = manager.validate_credentials()

        stubber.assert_no_pending_responses()

    assert first is second
    assert first.account_id == "123456789012"
    assert first.region == "eu-west-1"
    assert not first.assumed


def test_invalid_credentials_are_wrapped(manager) -> None:
    with Stubber(manager.get_client("sts")) as stubber:
        stubber.add_client_error("get_caller_identity", "InvalidClientTokenId", "bad key")

        with pytest.raises(CredentialError) as excinfo:
            manager.validate_credentials()

    assert excinfo.value.context.aws_service == "sts"
    assert excinfo.value.context.error_code == "InvalidClientTokenId"


def test_assume_role_switches_clients(manager) -> None:
    base_waf = manager.waf_client()
    config = AssumeRoleConfig(ROLE_ARN, external_id="ext-1", duration_seconds=900)

    with Stubber(manager.get_client("sts")) as stubber:
        stubber.add_response(
            "assume_role",
            {
                "Credentials": {
                    "AccessKeyId": "ASIAEXAMPLEEXAMPLE01",
                    "SecretAccessKey": "secret",
                    "SessionToken": "session",
                    "Expiration": datetime(2030, 1, 1, tzinfo=timezone.utc),
                },
                "AssumedRoleUser": {
                    "AssumedRoleId": "AROAEXAMPLE:waf-deploy",
                    "Arn": "arn:aws:sts::210987654321:assumed-role/waf-admin/waf-deploy",
                },
            },
            {
                "RoleArn": ROLE_ARN,
                "RoleSessionName": "waf-deploy",
                "DurationSeconds": 900,
                "ExternalId": "ext-1",
            },
        )
        credentials = manager.assume_role(config)

    assert credentials.assumed
    assert credentials.account_id == "210987654321"
    assert manager.validate_credentials() is credentials
    assert manager.waf_client() is not base_waf


def test_assume_role_denied_is_a_permission_error(manager) -> None:
    with Stubber(manager.get_client("sts")) as stubber:
        stubber.add_client_error("assume_role", "AccessDenied", "not allowed")

        with pytest.raises(PermissionError):
            manager.assume_role(AssumeRoleConfig(ROLE_ARN))


def test_assume_role_requires_a_role(manager) -> None:
    with pytest.raises(ValueError):
        manager.assume_role()


def test_clear_cache_drops_identity_and_clients(manager) -> None:
    client = manager.waf_client()
    manager.clear_cache()

    assert manager.waf_client() is not client


def test_account_from_arn() -> None:
    assert account_from_arn("arn:aws:sts::210987654321:assumed-role/r/s") == "210987654321"
