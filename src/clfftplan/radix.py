"""
Radix decomposition helpers for the FFT kernel builders.

all functions here are pure integer arithmetic. the local-memory regime picks
factors that keep one whole transform inside a work group; the global-memory
regime splits long transforms into one kernel launch per factor.
"""

import logging
from typing import Dict, Iterable, Optional, Tuple

from .errors import ConfigurationError, InternalInvariantError

logger = logging.getLogger("clfftplan.radix")

# Register radix used when nothing else is configured
DEFAULT_MAX_RADIX = 16
# Pass radix for transforms planned one kernel per factor
DEFAULT_GLOBAL_BASE_RADIX = 128

# Balanced decompositions for the local-memory regime. The first factor sets
# the registers per work item, the product of the rest sets the thread count.
# e.g. 1024 = 16 x 16 x 4: float2 a[16] per work item and 64 work items.
BALANCED_RADICES: Dict[int, Tuple[int, ...]] = {
    2: (2,),
    4: (4,),
    8: (8,),
    16: (8, 2),
    32: (8, 4),
    64: (8, 8),
    128: (8, 4, 4),
    256: (4, 4, 4, 4),
    512: (8, 8, 8),
    1024: (16, 16, 4),
    2048: (8, 8, 8, 4),
}


def log2(n: int) -> int:
    """Floor of log2(n); 0 for n <= 1."""
    return 0 if n <= 1 else 1 + log2(n // 2)


def is_power_of_two(n: int) -> bool:
    return n > 0 and n == (1 << log2(n))


def product(factors: Iterable[int]) -> int:
    result = 1
    for f in factors:
        result *= f
    return result


def validate_decomposition(n: int, factors: Tuple[int, ...], bound: Optional[int] = None) -> Tuple[int, ...]:
    """
    Check a factorization of n.

    Args:
        n: Transform length
        factors: Candidate radices
        bound: Largest allowed factor (None = unbounded)

    Returns:
        The factors, unchanged

    Raises:
        InternalInvariantError: product mismatch, non-power-of-two or oversized factor
    """
    if not factors:
        raise InternalInvariantError("empty radix decomposition", size=n)
    for f in factors:
        if not is_power_of_two(f):
            raise InternalInvariantError(f"expecting power of two radix, found {f}", size=n)
        if bound is not None and f > bound:
            raise InternalInvariantError(f"radix {f} exceeds bound {bound}", size=n)
    total = product(factors)
    if total != n:
        raise InternalInvariantError(
            f"product of radices {total} doesn't match the length of signal {n}", size=n)
    return factors


def decompose_generic(n: int, max_radix: int) -> Tuple[int, ...]:
    """Divide n by max_radix until the remainder is at most max_radix."""
    if max_radix < 2:
        raise ConfigurationError(f"maximum radix must be at least 2, got {max_radix}")
    factors = []
    while n > max_radix:
        factors.append(max_radix)
        n //= max_radix
    factors.append(n)
    return tuple(factors)


def decompose_local(n: int, max_radix: int = DEFAULT_MAX_RADIX,
                    capacity: Optional[int] = None) -> Tuple[int, ...]:
    """
    Choose radices for a transform computed inside one work group.

    The balanced table is preferred. When its first factor is above max_radix,
    or n / first factor would need more work items than the capacity, the
    generic max_radix decomposition is used instead.

    Args:
        n: Transform length (power of two)
        max_radix: Largest in-register transform
        capacity: Maximum work items per work group (None = unchecked)

    Returns:
        Tuple of radices, largest first
    """
    if not is_power_of_two(n) or n < 2:
        raise ConfigurationError("transform length must be a power of two of at least 2", size=n)
    if n > max(BALANCED_RADICES):
        raise ConfigurationError(
            f"no local-memory decomposition above {max(BALANCED_RADICES)}", size=n)

    balanced = BALANCED_RADICES[n]
    if max(balanced) <= max_radix:
        if capacity is None or n // balanced[0] <= capacity:
            return validate_decomposition(n, balanced, max_radix)
        logger.debug(f"balanced radices {balanced} need {n // balanced[0]} work items, "
                     f"capacity is {capacity}; using max radix {max_radix}")

    return validate_decomposition(n, decompose_generic(n, max_radix), max_radix)


def decompose_global(n: int, base_radix: int = DEFAULT_GLOBAL_BASE_RADIX) -> Tuple[int, ...]:
    """One radix per global pass, base_radix capped at n."""
    if not is_power_of_two(n):
        raise ConfigurationError("transform length must be a power of two", size=n)
    bound = min(n, base_radix)
    return validate_decomposition(n, decompose_generic(n, bound), bound)


def radix_to_r1(b: int) -> int:
    """In-register part of a global pass radix."""
    if b <= 8:
        return b
    r1 = 2
    while b // r1 > r1:
        r1 *= 2
    return r1


def radix_to_r2(b: int) -> int:
    """Cross-thread part of a global pass radix."""
    return b // radix_to_r1(b)


def split_radix(b: int) -> Tuple[int, int]:
    r1 = radix_to_r1(b)
    r2 = b // r1
    if r2 > r1 or r1 * r2 != b:
        raise InternalInvariantError(f"bad split {r1} x {r2} of radix {b}", size=b)
    return r1, r2


def radix_suffix(factors: Iterable[int]) -> str:
    """e.g. (8, 4) -> '_radix_8_4'; zero entries are ignored."""
    return "_radix" + "".join(f"_{f}" for f in factors if f != 0)
