"""
Utility functions and helpers.

Shared logging setup for the server, the CLI and the tests.
"""

from kubechat.utils.logging import setup_logging

__all__ = [
    "setup_logging",
]
