"""Find usages of feature flags that have been around for too long."""

__version__ = "0.1.0"
