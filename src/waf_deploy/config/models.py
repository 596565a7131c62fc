"""Pydantic models for configuration schema."""

import re
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from waf_deploy.utils.retry import RetryPolicy


FIELD_TO_MATCH_TYPES = (
    "URI",
    "QUERY_STRING",
    "HEADER",
    "METHOD",
    "BODY",
    "SINGLE_QUERY_ARG",
    "ALL_QUERY_ARGS",
)

TEXT_TRANSFORMATIONS = (
    "NONE",
    "COMPRESS_WHITE_SPACE",
    "HTML_ENTITY_DECODE",
    "LOWERCASE",
    "CMD_LINE",
    "URL_DECODE",
)

RESOURCE_TYPES = ("regex_pattern_set", "regex_match_set")

WAF_ID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")
REGION_PATTERN = re.compile(r"^[a-z]{2}(-gov)?-[a-z]+-\d$")


def looks_like_waf_id(value: str) -> bool:
    """Return True if value has the shape of a WAF Classic entity ID."""
    return bool(WAF_ID_PATTERN.match(value))


def check_region(value: str) -> str:
    """Return value if it looks like an AWS region name, else raise ValueError."""
    if not REGION_PATTERN.match(value):
        raise ValueError(f"Invalid AWS region: {value}")
    return value


class RetryConfig(BaseModel):
    """Retry settings for change-token guarded calls."""

    max_duration: Optional[float] = Field(None, ge=0, le=3600)
    base_delay: Optional[float] = Field(None, ge=0, le=60)
    max_delay: Optional[float] = Field(None, ge=0, le=300)
    exponential_base: Optional[float] = Field(None, ge=1)
    jitter: Optional[bool] = None

    def apply(self, policy: RetryPolicy) -> RetryPolicy:
        """Return policy with the settings given here overridden."""
        return policy.replace(**self.model_dump(exclude_none=True))


class ProjectConfig(BaseModel):
    """Project-level configuration."""

    name: str = Field(..., min_length=1, max_length=64, pattern="^[a-z0-9-]+$")
    region: str = Field("us-east-1", min_length=1)
    scope: str = Field("global", pattern="^(global|regional)$")

    @field_validator("region")
    @classmethod
    def validate_region(cls, v: str) -> str:
        """Validate AWS region format."""
        return check_region(v)

    @property
    def regional(self) -> bool:
        return self.scope == "regional"


class RegexPatternSetConfig(BaseModel):
    """Regex pattern set configuration."""

    name: str = Field(..., min_length=1, max_length=128)
    patterns: List[str] = Field(default_factory=list)

    @field_validator("patterns")
    @classmethod
    def validate_patterns(cls, v: List[str]) -> List[str]:
        """Validate pattern strings are non-empty and unique."""
        for pattern in v:
            if not pattern:
                raise ValueError("Regex pattern strings cannot be empty")
            if len(pattern) > 512:
                raise ValueError(f"Regex pattern exceeds 512 characters: {pattern[:32]}...")
        if len(set(v)) != len(v):
            raise ValueError("Regex pattern strings must be unique")
        return v


class FieldToMatchConfig(BaseModel):
    """Part of the web request to inspect."""

    type: str
    data: Optional[str] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        if v not in FIELD_TO_MATCH_TYPES:
            raise ValueError(
                f"Invalid field_to_match type: {v}. Must be one of: {', '.join(FIELD_TO_MATCH_TYPES)}"
            )
        return v

    @model_validator(mode="after")
    def validate_data(self):
        """HEADER and SINGLE_QUERY_ARG name the header or argument in data."""
        if self.type in ("HEADER", "SINGLE_QUERY_ARG") and not self.data:
            raise ValueError(f"data is required when field_to_match type is {self.type}")
        return self


class RegexMatchTupleConfig(BaseModel):
    """One regex match tuple of a regex match set."""

    field_to_match: FieldToMatchConfig
    regex_pattern_set: str = Field(..., min_length=1)
    text_transformation: str = "NONE"

    @field_validator("text_transformation")
    @classmethod
    def validate_text_transformation(cls, v: str) -> str:
        if v not in TEXT_TRANSFORMATIONS:
            raise ValueError(
                f"Invalid text_transformation: {v}. Must be one of: {', '.join(TEXT_TRANSFORMATIONS)}"
            )
        return v


class RegexMatchSetConfig(BaseModel):
    """Regex match set configuration."""

    name: str = Field(..., min_length=1, max_length=128)
    tuples: List[RegexMatchTupleConfig] = Field(default_factory=list)

    @field_validator("tuples")
    @classmethod
    def validate_unique_tuples(cls, v: List[RegexMatchTupleConfig]) -> List[RegexMatchTupleConfig]:
        """WAF compares header names case-insensitively, so data is lowercased."""
        seen = set()
        for match_tuple in v:
            field_to_match = match_tuple.field_to_match
            key = (
                field_to_match.type.upper(),
                (field_to_match.data or "").lower(),
                match_tuple.regex_pattern_set,
                match_tuple.text_transformation,
            )
            if key in seen:
                target = f"{field_to_match.type}:{field_to_match.data}" if field_to_match.data else field_to_match.type
                raise ValueError(
                    f"Duplicate regex match tuple {target} -> {match_tuple.regex_pattern_set} "
                    f"({match_tuple.text_transformation})"
                )
            seen.add(key)
        return v


class WAFConfig(BaseModel):
    """Complete waf.yaml document."""

    project: ProjectConfig
    retry: RetryConfig = Field(default_factory=RetryConfig)
    retry_overrides: Dict[str, RetryConfig] = Field(default_factory=dict)
    regex_pattern_sets: List[RegexPatternSetConfig] = Field(default_factory=list)
    regex_match_sets: List[RegexMatchSetConfig] = Field(default_factory=list)

    @field_validator("retry_overrides")
    @classmethod
    def validate_override_keys(cls, v: Dict[str, RetryConfig]) -> Dict[str, RetryConfig]:
        for key in v:
            if key not in RESOURCE_TYPES:
                raise ValueError(
                    f"Unknown resource type in retry_overrides: {key}. "
                    f"Must be one of: {', '.join(RESOURCE_TYPES)}"
                )
        return v

    @model_validator(mode="after")
    def validate_references(self):
        """Validate names are unique and match sets reference known pattern sets."""
        pattern_set_names = [p.name for p in self.regex_pattern_sets]
        if len(set(pattern_set_names)) != len(pattern_set_names):
            raise ValueError("Regex pattern set names must be unique")

        match_set_names = [m.name for m in self.regex_match_sets]
        if len(set(match_set_names)) != len(match_set_names):
            raise ValueError("Regex match set names must be unique")

        for match_set in self.regex_match_sets:
            for match_tuple in match_set.tuples:
                ref = match_tuple.regex_pattern_set
                if ref not in pattern_set_names and not looks_like_waf_id(ref):
                    raise ValueError(
                        f"Regex match set '{match_set.name}' references unknown "
                        f"regex pattern set '{ref}'"
                    )
        return self

    def retry_policy(self, resource_type: str, base: Optional[RetryPolicy] = None) -> RetryPolicy:
        """Build the retry policy for a resource type.

        Args:
            resource_type: 'regex_pattern_set' or 'regex_match_set'
            base: Policy to start from (defaults to RetryPolicy())

        Returns:
            Policy with the global retry settings and any per-type override applied
        """
        policy = self.retry.apply(base or RetryPolicy())
        override = self.retry_overrides.get(resource_type)
        if override is not None:
            policy = override.apply(policy)
        return policy
