"""Utility functions and helpers."""

from .deps import MissingDependency, check_package, require_package, get_install_hint

__all__ = ["MissingDependency", "check_package", "require_package", "get_install_hint"]
