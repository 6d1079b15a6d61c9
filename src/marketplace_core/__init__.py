"""Marketplace core: aggregate lifecycles, domain event delivery, feature flags."""

__version__ = "0.1.0"
