"""Provisioning of AWS WAF Classic regex sets with change-token retries."""

__version__ = "0.1.0"
