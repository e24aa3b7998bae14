"""Optional dependency checks."""

import importlib
import logging
import shutil
from typing import Optional

logger = logging.getLogger(__name__)


class MissingDependency(Exception):
    """Exception raised when an optional dependency is missing."""

    def __init__(self, package_name: str, install_hint: str):
        self.package_name = package_name
        self.install_hint = install_hint
        super().__init__(f"Missing dependency: {package_name}\n{install_hint}")


def get_install_hint(package_name: str, pip_package: Optional[str] = None) -> str:
    """
    Generate an install hint for a missing package.

    Parameters
    ----------
    package_name : str
        The Python import name of the package.
    pip_package : str, optional
        The pip package name if different from import name.

    Returns
    -------
    str
        Install hint message.
    """
    pip_pkg = pip_package or package_name
    if shutil.which("uv") is not None:
        return f"Install with one of:\n  - uv pip install {pip_pkg}\n  - pip install {pip_pkg}"
    return f"Install with: pip install {pip_pkg}"


def check_package(import_name: str) -> bool:
    """Return True if ``import_name`` can be imported."""
    try:
        importlib.import_module(import_name)
        return True
    except ImportError:
        return False


def require_package(import_name: str, pip_package: Optional[str] = None) -> None:
    """
    Require a package to be installed.

    Parameters
    ----------
    import_name : str
        The Python import name of the package (e.g., 'pyarrow').
    pip_package : str, optional
        The pip package name if different from import name.

    Raises
    ------
    MissingDependency
        If the package cannot be imported.
    """
    if check_package(import_name):
        logger.debug(f"Package '{import_name}' is available")
        return
    logger.error(f"Missing dependency: {import_name}")
    raise MissingDependency(import_name, get_install_hint(import_name, pip_package))
