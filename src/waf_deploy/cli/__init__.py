"""Command line interface for waf-deploy."""
