"""Ingredient Library - table state, hierarchy and filter engine for an ingredient catalog."""

from .utils.constants import APP_NAME, APP_VERSION

__version__ = APP_VERSION

__all__ = ["APP_NAME", "__version__"]
