"""
policy.py - Quality tiers and the size-based tier selection.

Each tier carries a fixed (scale, quality) pair:
- scale: applied to page dimensions before rasterizing
- quality: lossy encode quality, 0.0 (smallest) to 1.0 (best)

Larger inputs get more aggressive tiers so output size stays roughly
bounded regardless of input size.
"""

import logging
from enum import Enum
from typing import Tuple, Union

logger = logging.getLogger(__name__)

MB = 1024 * 1024

# Size band boundaries (lower bound inclusive for the next band)
MEDIUM_SIZE_THRESHOLD = 1 * MB
LARGE_SIZE_THRESHOLD = 5 * MB


class CompressionQuality(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SizeClass(str, Enum):
    SMALL = "small"    # < 1 MB
    MEDIUM = "medium"  # 1-5 MB
    LARGE = "large"    # >= 5 MB


# tier -> (scale, encode quality)
TIER_PARAMETERS = {
    CompressionQuality.LOW: (0.5, 0.3),
    CompressionQuality.MEDIUM: (0.7, 0.5),
    CompressionQuality.HIGH: (0.8, 0.7),
}

SIZE_CLASS_TIERS = {
    SizeClass.SMALL: CompressionQuality.HIGH,
    SizeClass.MEDIUM: CompressionQuality.MEDIUM,
    SizeClass.LARGE: CompressionQuality.LOW,
}


def size_in_mb(size_bytes: int) -> float:
    return size_bytes / MB


def classify_size(size_bytes: int) -> SizeClass:
    """Put a byte count into its size band."""
    if size_bytes < 0:
        raise ValueError(f"Size must be non-negative, got {size_bytes}")

    if size_bytes < MEDIUM_SIZE_THRESHOLD:
        return SizeClass.SMALL
    if size_bytes < LARGE_SIZE_THRESHOLD:
        return SizeClass.MEDIUM
    return SizeClass.LARGE


def select_tier(size_bytes: int) -> CompressionQuality:
    """
    Pick a quality tier from the input document size.

    < 1 MB -> high, 1-5 MB -> medium, >= 5 MB -> low.
    """
    size_class = classify_size(size_bytes)
    tier = SIZE_CLASS_TIERS[size_class]
    logger.debug(
        f"Input {size_in_mb(size_bytes):.2f} MB ({size_class.value}) -> tier {tier.value}"
    )
    return tier


def resolve_tier(tier: Union[CompressionQuality, str]) -> CompressionQuality:
    """Accept a tier or its name ("low", "medium", "high")."""
    if isinstance(tier, CompressionQuality):
        return tier
    try:
        return CompressionQuality(str(tier).lower())
    except ValueError:
        raise ValueError(
            f"Unknown compression tier {tier!r}, "
            f"expected one of {[t.value for t in CompressionQuality]}"
        ) from None


def parameters_for(tier: Union[CompressionQuality, str]) -> Tuple[float, float]:
    """Return the fixed (scale, quality) pair for a tier."""
    return TIER_PARAMETERS[resolve_tier(tier)]
