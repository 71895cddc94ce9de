"""FORJ Python SDK."""

__version__ = "0.1.0"

from forj_sdk.client import ForjAPIError, ForjClient

__all__ = ["ForjAPIError", "ForjClient"]
