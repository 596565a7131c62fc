"""Loads waf.yaml into validated configuration models."""

from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from waf_deploy.utils.errors import ConfigurationError
from .models import WAFConfig, RegexPatternSetConfig, RegexMatchSetConfig


class ConfigValidationError(ConfigurationError):
    """waf.yaml could not be parsed or does not match the schema.

    ``errors`` holds one ``{"loc": [...], "msg": ...}`` dict per problem.
    """

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message, suggestions=['Fix the listed fields in the configuration file'])
        self.errors = errors or []

    @classmethod
    def from_pydantic(cls, error: ValidationError) -> 'ConfigValidationError':
        errors = [{'loc': list(e['loc']), 'msg': e['msg']} for e in error.errors()]
        return cls(f"Configuration validation failed with {len(errors)} error(s)", errors)

    def __str__(self) -> str:
        lines = [self.message]
        if self.errors:
            lines.append("")
        for error in self.errors:
            location = " -> ".join(str(part) for part in error.get('loc', [])) or "<root>"
            lines.append(f"  • {location}: {error.get('msg', 'Unknown error')}")
        return "\n".join(lines)


class Config:
    """A waf.yaml file and the model validated from it."""

    def __init__(self, config_path: str):
        self.config_path = Path(config_path)
        self.data: Dict[str, Any] = {}
        self.model: Optional[WAFConfig] = None

    def load(self) -> "Config":
        """Read and validate the file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ConfigValidationError: If the YAML is malformed or invalid
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        try:
            data = yaml.safe_load(self.config_path.read_text()) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Failed to parse YAML: {e}") from e

        return self.load_dict(data)

    def load_dict(self, data: Dict[str, Any]) -> "Config":
        """Validate an already-parsed configuration document."""
        if not isinstance(data, dict):
            raise ConfigValidationError("Configuration must be a mapping")

        self.data = data
        # Report a missing project on its own; every other check depends on it
        if 'project' not in data:
            raise ConfigValidationError(
                "Configuration validation failed with 1 error(s)",
                [{'loc': ['project'], 'msg': "Required field 'project' is missing"}]
            )

        try:
            self.model = WAFConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigValidationError.from_pydantic(e) from e
        return self

    @property
    def regex_pattern_sets(self) -> List[RegexPatternSetConfig]:
        return self.model.regex_pattern_sets if self.model else []

    @property
    def regex_match_sets(self) -> List[RegexMatchSetConfig]:
        return self.model.regex_match_sets if self.model else []

    def to_dict(self) -> Dict[str, Any]:
        """Dump the validated model back to plain data."""
        return self.model.model_dump(exclude_none=True) if self.model else {}
