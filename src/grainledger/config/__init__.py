"""Configuration loading."""

from grainledger.config.resolver import ConfigResolver

__all__ = ["ConfigResolver"]
