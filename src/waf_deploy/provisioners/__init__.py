"""Provisioners for WAF Classic resources."""

from .base import BaseProvisioner, Resource, ProvisionPlan, ChangeType
from .regex_pattern_set import RegexPatternSetProvisioner
from .regex_match_set import RegexMatchSetProvisioner

__all__ = [
    'BaseProvisioner',
    'Resource',
    'ProvisionPlan',
    'ChangeType',
    'RegexPatternSetProvisioner',
    'RegexMatchSetProvisioner',
]
