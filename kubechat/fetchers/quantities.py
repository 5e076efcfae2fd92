"""Parsing of Kubernetes resource quantity strings.

Only the encodings returned by the node inventory and metrics-server APIs
are recognized:

- CPU usage in nanocores, e.g. ``"160635734n"``
- memory in kibibytes, e.g. ``"1879200Ki"``
- CPU capacity as a plain decimal core count, e.g. ``"2"``

Any other scale marker is rejected with QuantityError.
"""

import re

from kubechat.fetchers.base import QuantityError

NANOCORES_PER_CORE = 1_000_000_000
BYTES_PER_KI = 1024

_INTEGER = re.compile(r"[0-9]+")
_DECIMAL = re.compile(r"[0-9]+(\.[0-9]+)?")


def parse_cpu_usage(value: str) -> float:
    """Convert a nanocore CPU usage string into cores.

    Args:
        value: Quantity such as ``"160635734n"``

    Returns:
        CPU usage in cores (``0.160635734`` for the example above)

    Raises:
        QuantityError: If the ``n`` marker is missing or the number is invalid
    """
    if not value.endswith("n"):
        raise QuantityError(f"Invalid CPU format: {value}")

    digits = value[:-1]
    if not _INTEGER.fullmatch(digits):
        raise QuantityError(f"Failed to parse CPU nanocores: {value}")

    return int(digits) / NANOCORES_PER_CORE


def parse_memory_ki(value: str) -> int:
    """Convert a kibibyte memory string into an integer number of Ki.

    Raises:
        QuantityError: If the ``Ki`` marker is missing or the number is invalid
    """
    if not value.endswith("Ki"):
        raise QuantityError(f"Invalid memory format: {value}")

    digits = value[:-2]
    if not _INTEGER.fullmatch(digits):
        raise QuantityError(f"Failed to parse memory Ki: {value}")

    return int(digits)


def parse_cpu_capacity(value: str) -> float:
    """Parse a plain decimal CPU core count such as ``"2"`` or ``"3.5"``."""
    if not _DECIMAL.fullmatch(value):
        raise QuantityError(f"Failed to parse CPU capacity: {value}")
    return float(value)


def ki_to_bytes(kibibytes: int) -> int:
    """Convert kibibytes to bytes."""
    return kibibytes * BYTES_PER_KI
