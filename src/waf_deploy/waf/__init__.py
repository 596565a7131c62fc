"""WAF Classic change-token handling."""

from waf_deploy.waf.retryer import ChangeTokenRetryer

__all__ = [
    'ChangeTokenRetryer',
]
