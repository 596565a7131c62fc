"""Shared fixtures: an in-memory WAF Classic backend and botocore stubs."""

from __future__ import annotations

import itertools
import uuid

import boto3
import pytest
from botocore.exceptions import ClientError
from botocore.stub import Stubber

from waf_deploy.utils.retry import RetryPolicy


def client_error(code: str, operation: str = "UpdateRegexPatternSet", message: str = "") -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": message or code},
         "ResponseMetadata": {"RequestId": "req-1"}},
        operation,
    )


def fast_policy(**overrides) -> RetryPolicy:
    settings = {"max_duration": 5.0, "base_delay": 0.0, "max_delay": 0.0, "jitter": False}
    settings.update(overrides)
    return RetryPolicy(**settings)


class FakeWAFClient:
    """WAF Classic lookalike that enforces single-use, latest-only change tokens."""

    def __init__(self):
        self._counter = itertools.count(1)
        self.latest_token = None
        self.used_tokens = set()
        self.token_fetches = 0
        self.calls = []
        self.failures = {}
        self.pattern_sets = {}
        self.match_sets = {}

    # failure injection

    def fail(self, method: str, *errors: Exception) -> None:
        self.failures.setdefault(method, []).extend(errors)

    def _maybe_fail(self, method: str) -> None:
        pending = self.failures.get(method)
        if pending:
            raise pending.pop(0)

    def _consume(self, token: str, operation: str) -> None:
        if token != self.latest_token or token in self.used_tokens:
            raise client_error("WAFStaleDataException", operation)
        self.used_tokens.add(token)

    def _missing(self, operation: str) -> ClientError:
        return client_error("WAFNonexistentItemException", operation)

    # tokens

    def get_change_token(self):
        self.token_fetches += 1
        self._maybe_fail("get_change_token")
        self.latest_token = f"token-{next(self._counter)}"
        return {"ChangeToken": self.latest_token}

    def get_change_token_status(self, ChangeToken):
        return {"ChangeTokenStatus": "INSYNC" if ChangeToken in self.used_tokens else "PENDING"}

    # regex pattern sets

    def create_regex_pattern_set(self, Name, ChangeToken):
        self.calls.append(("create_regex_pattern_set", Name))
        self._maybe_fail("create_regex_pattern_set")
        self._consume(ChangeToken, "CreateRegexPatternSet")
        set_id = str(uuid.uuid4())
        self.pattern_sets[set_id] = {"RegexPatternSetId": set_id, "Name": Name, "RegexPatternStrings": []}
        return {"RegexPatternSet": dict(self.pattern_sets[set_id]), "ChangeToken": ChangeToken}

    def update_regex_pattern_set(self, RegexPatternSetId, Updates, ChangeToken):
        self.calls.append(("update_regex_pattern_set", RegexPatternSetId, Updates))
        self._maybe_fail("update_regex_pattern_set")
        self._consume(ChangeToken, "UpdateRegexPatternSet")
        if RegexPatternSetId not in self.pattern_sets:
            raise self._missing("UpdateRegexPatternSet")
        patterns = self.pattern_sets[RegexPatternSetId]["RegexPatternStrings"]
        for update in Updates:
            if update["Action"] == "INSERT":
                patterns.append(update["RegexPatternString"])
            else:
                patterns.remove(update["RegexPatternString"])
        return {"ChangeToken": ChangeToken}

    def delete_regex_pattern_set(self, RegexPatternSetId, ChangeToken):
        self.calls.append(("delete_regex_pattern_set", RegexPatternSetId))
        self._maybe_fail("delete_regex_pattern_set")
        self._consume(ChangeToken, "DeleteRegexPatternSet")
        if RegexPatternSetId not in self.pattern_sets:
            raise self._missing("DeleteRegexPatternSet")
        if self.pattern_sets[RegexPatternSetId]["RegexPatternStrings"]:
            raise client_error("WAFNonEmptyEntityException", "DeleteRegexPatternSet")
        del self.pattern_sets[RegexPatternSetId]
        return {"ChangeToken": ChangeToken}

    def get_regex_pattern_set(self, RegexPatternSetId):
        self._maybe_fail("get_regex_pattern_set")
        if RegexPatternSetId not in self.pattern_sets:
            raise self._missing("GetRegexPatternSet")
        pattern_set = self.pattern_sets[RegexPatternSetId]
        return {"RegexPatternSet": {**pattern_set, "RegexPatternStrings": list(pattern_set["RegexPatternStrings"])}}

    def list_regex_pattern_sets(self, Limit=100, NextMarker=None):
        return {"RegexPatternSets": [
            {"RegexPatternSetId": s["RegexPatternSetId"], "Name": s["Name"]}
            for s in self.pattern_sets.values()
        ]}

    # regex match sets

    def create_regex_match_set(self, Name, ChangeToken):
        self.calls.append(("create_regex_match_set", Name))
        self._maybe_fail("create_regex_match_set")
        self._consume(ChangeToken, "CreateRegexMatchSet")
        set_id = str(uuid.uuid4())
        self.match_sets[set_id] = {"RegexMatchSetId": set_id, "Name": Name, "RegexMatchTuples": []}
        return {"RegexMatchSet": dict(self.match_sets[set_id]), "ChangeToken": ChangeToken}

    def update_regex_match_set(self, RegexMatchSetId, Updates, ChangeToken):
        self.calls.append(("update_regex_match_set", RegexMatchSetId, Updates))
        self._maybe_fail("update_regex_match_set")
        self._consume(ChangeToken, "UpdateRegexMatchSet")
        if RegexMatchSetId not in self.match_sets:
            raise self._missing("UpdateRegexMatchSet")
        tuples = self.match_sets[RegexMatchSetId]["RegexMatchTuples"]
        for update in Updates:
            if update["Action"] == "INSERT":
                if update["RegexMatchTuple"]["RegexPatternSetId"] not in self.pattern_sets:
                    raise self._missing("UpdateRegexMatchSet")
                tuples.append(update["RegexMatchTuple"])
            else:
                tuples.remove(update["RegexMatchTuple"])
        return {"ChangeToken": ChangeToken}

    def delete_regex_match_set(self, RegexMatchSetId, ChangeToken):
        self.calls.append(("delete_regex_match_set", RegexMatchSetId))
        self._maybe_fail("delete_regex_match_set")
        self._consume(ChangeToken, "DeleteRegexMatchSet")
        if RegexMatchSetId not in self.match_sets:
            raise self._missing("DeleteRegexMatchSet")
        if self.match_sets[RegexMatchSetId]["RegexMatchTuples"]:
            raise client_error("WAFNonEmptyEntityException", "DeleteRegexMatchSet")
        del self.match_sets[RegexMatchSetId]
        return {"ChangeToken": ChangeToken}

    def get_regex_match_set(self, RegexMatchSetId):
        self._maybe_fail("get_regex_match_set")
        if RegexMatchSetId not in self.match_sets:
            raise self._missing("GetRegexMatchSet")
        match_set = self.match_sets[RegexMatchSetId]
        return {"RegexMatchSet": {**match_set, "RegexMatchTuples": list(match_set["RegexMatchTuples"])}}

    def list_regex_match_sets(self, Limit=100, NextMarker=None):
        return {"RegexMatchSets": [
            {"RegexMatchSetId": s["RegexMatchSetId"], "Name": s["Name"]}
            for s in self.match_sets.values()
        ]}


class FakeClientManager:
    """Stands in for AWSClientManager, handing out one shared fake client."""

    def __init__(self, client, assume_role_config=None):
        self.client = client
        self.assume_role_config = assume_role_config
        self.requested = []
        self.identity_checks = 0
        self.assumed = []

    def validate_credentials(self):
        self.identity_checks += 1

    def assume_role(self, config=None):
        self.assumed.append(config or self.assume_role_config)

    def waf_client(self, regional=False, region=None):
        self.requested.append((regional, region))
        return self.client


@pytest.fixture
def fake_waf() -> FakeWAFClient:
    return FakeWAFClient()


@pytest.fixture
def waf_client():
    return boto3.client(
        "waf",
        region_name="us-east-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.fixture
def stubbed_waf(waf_client):
    with Stubber(waf_client) as stubber:
        yield waf_client, stubber
        stubber.assert_no_pending_responses()


@pytest.fixture
def config_data() -> dict:
    return {
        "project": {"name": "edge-filters", "region": "us-east-1"},
        "retry": {"max_duration": 5, "base_delay": 0, "max_delay": 0, "jitter": False},
        "regex_pattern_sets": [
            {"name": "bad-bots", "patterns": ["curl", "wget"]},
        ],
        "regex_match_sets": [
            {
                "name": "bot-match",
                "tuples": [
                    {
                        "field_to_match": {"type": "HEADER", "data": "User-Agent"},
                        "regex_pattern_set": "bad-bots",
                        "text_transformation": "LOWERCASE",
                    }
                ],
            }
        ],
    }
