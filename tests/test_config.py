"""Tests for waf.yaml loading and validation."""

from __future__ import annotations

import copy

import pytest
import yaml

from waf_deploy.config.models import check_region, looks_like_waf_id
from waf_deploy.config.parser import Config, ConfigValidationError
from waf_deploy.utils.errors import ConfigurationError


def write_config(tmp_path, data) -> str:
    path = tmp_path / "waf.yaml"
    path.write_text(yaml.safe_dump(data))
    return str(path)


def test_load_valid_config(tmp_path, config_data) -> None:
    config = Config(write_config(tmp_path, config_data)).load()

    assert config.model.project.name == "edge-filters"
    assert config.model.project.regional is False
    assert [p.name for p in config.regex_pattern_sets] == ["bad-bots"]
    match_tuple = config.regex_match_sets[0].tuples[0]
    assert match_tuple.field_to_match.data == "User-Agent"
    assert match_tuple.text_transformation == "LOWERCASE"


def test_missing_file_raises(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        Config(str(tmp_path / "missing.yaml")).load()


def test_invalid_yaml_raises(tmp_path) -> None:
    path = tmp_path / "waf.yaml"
    path.write_text("project: [unclosed")

    with pytest.raises(ConfigValidationError, match="Failed to parse YAML"):
        Config(str(path)).load()


def test_missing_project_is_reported(tmp_path) -> None:
    with pytest.raises(ConfigValidationError) as excinfo:
        Config(write_config(tmp_path, {"regex_pattern_sets": []})).load()

    assert excinfo.value.errors[0]["loc"] == ["project"]


def test_unknown_pattern_set_reference_is_rejected(config_data) -> None:
    data = copy.deepcopy(config_data)
    data["regex_match_sets"][0]["tuples"][0]["regex_pattern_set"] = "nope"

    with pytest.raises(ConfigValidationError) as excinfo:
        Config("unused.yaml").load_dict(data)

    assert "unknown regex pattern set 'nope'" in str(excinfo.value)


def test_pattern_set_reference_may_be_a_waf_id(config_data) -> None:
    data = copy.deepcopy(config_data)
    data["regex_match_sets"][0]["tuples"][0]["regex_pattern_set"] = "0b1c7a0e-1111-2222-3333-444455556666"

    config = Config("unused.yaml").load_dict(data)

    assert config.regex_match_sets[0].tuples[0].regex_pattern_set.startswith("0b1c7a0e")


@pytest.mark.parametrize(
    "mutate, message",
    [
        (lambda d: d["regex_match_sets"][0]["tuples"][0]["field_to_match"].update(type="COOKIE"),
         "Invalid field_to_match type"),
        (lambda d: d["regex_match_sets"][0]["tuples"][0]["field_to_match"].pop("data"),
         "data is required"),
        (lambda d: d["regex_match_sets"][0]["tuples"][0].update(text_transformation="UPPERCASE"),
         "Invalid text_transformation"),
        (lambda d: d["regex_pattern_sets"][0].update(patterns=["a", "a"]),
         "must be unique"),
        (lambda d: d["regex_match_sets"][0]["tuples"].append({
            "field_to_match": {"type": "HEADER", "data": "user-agent"},
            "regex_pattern_set": "bad-bots",
            "text_transformation": "LOWERCASE",
        }),
         "Duplicate regex match tuple"),
        (lambda d: d["project"].update(scope="planet"),
         "scope"),
        (lambda d: d.update(retry_overrides={"ip_set": {"max_duration": 1}}),
         "Unknown resource type"),
    ],
)
def test_invalid_values_are_reported(config_data, mutate, message) -> None:
    data = copy.deepcopy(config_data)
    mutate(data)

    with pytest.raises(ConfigValidationError) as excinfo:
        Config("unused.yaml").load_dict(data)

    assert message in str(excinfo.value)


def test_retry_policy_applies_global_settings_and_overrides(config_data) -> None:
    data = copy.deepcopy(config_data)
    data["retry_overrides"] = {"regex_match_set": {"max_duration": 2}}

    model = Config("unused.yaml").load_dict(data).model

    pattern_policy = model.retry_policy("regex_pattern_set")
    match_policy = model.retry_policy("regex_match_set")
    assert pattern_policy.max_duration == 5
    assert pattern_policy.jitter is False
    assert match_policy.max_duration == 2
    assert match_policy.base_delay == 0


def test_retry_policy_defaults_without_retry_section(config_data) -> None:
    data = copy.deepcopy(config_data)
    del data["retry"]

    policy = Config("unused.yaml").load_dict(data).model.retry_policy("regex_pattern_set")

    assert policy.max_duration == 15 * 60


def test_looks_like_waf_id() -> None:
    assert looks_like_waf_id("0b1c7a0e-1111-2222-3333-444455556666")
    assert not looks_like_waf_id("bad-bots")


@pytest.mark.parametrize("region", ["us-east-1", "eu-central-2", "us-gov-west-1"])
def test_check_region_accepts_aws_regions(region) -> None:
    assert check_region(region) == region


def test_check_region_rejects_garbage() -> None:
    with pytest.raises(ValueError, match="Invalid AWS region"):
        check_region("moon-base-1a")


def test_validation_error_is_a_configuration_error(config_data) -> None:
    data = copy.deepcopy(config_data)
    data["project"]["scope"] = "planet"

    with pytest.raises(ConfigurationError) as excinfo:
        Config("unused.yaml").load_dict(data)

    assert excinfo.value.errors[0]["loc"] == ["project", "scope"]
    assert excinfo.value.suggestions


def test_to_dict_round_trips_through_the_model(config_data) -> None:
    dumped = Config("unused.yaml").load_dict(copy.deepcopy(config_data)).to_dict()

    assert dumped["project"]["name"] == "edge-filters"
    assert dumped["regex_pattern_sets"][0]["patterns"] == ["curl", "wget"]


def test_tuples_differing_in_transformation_are_distinct(config_data) -> None:
    data = copy.deepcopy(config_data)
    data["regex_match_sets"][0]["tuples"].append({
        "field_to_match": {"type": "HEADER", "data": "user-agent"},
        "regex_pattern_set": "bad-bots",
        "text_transformation": "NONE",
    })

    config = Config("unused.yaml").load_dict(data)

    assert len(config.regex_match_sets[0].tuples) == 2
