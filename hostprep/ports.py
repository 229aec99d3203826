"""Port validation and random port selection."""

import random
from typing import Collection, Optional

from hostprep.constants import (
    MAX_MANUAL_PORT,
    MAX_RANDOM_PORT,
    MIN_MANUAL_PORT,
    MIN_RANDOM_PORT,
    RANDOM_PORT_ATTEMPTS,
)
from hostprep.errors import PortSelectionError


def validate_port(
    value,
    in_use: Collection[int] = (),
    low: int = MIN_MANUAL_PORT,
    high: int = MAX_MANUAL_PORT,
) -> int:
    """Return ``value`` as an int or raise ``ValueError`` saying why it is unusable."""
    text = str(value).strip()
    if not text.isdigit():
        raise ValueError(f"'{text}' is not a port number")
    port = int(text)
    if not low <= port <= high:
        raise ValueError(f"Port {port} is outside {low}-{high}")
    if port in in_use:
        raise ValueError(f"Port {port} is already in use")
    return port


def generate_random_port(
    in_use: Collection[int],
    low: int = MIN_RANDOM_PORT,
    high: int = MAX_RANDOM_PORT,
    attempts: int = RANDOM_PORT_ATTEMPTS,
    rng: Optional[random.Random] = None,
) -> int:
    rng = rng or random.SystemRandom()
    for _ in range(attempts):
        port = rng.randint(low, high)
        if port not in in_use:
            return port
    raise PortSelectionError(
        f"Failed to find an available port in {low}-{high} after {attempts} attempts"
    )
