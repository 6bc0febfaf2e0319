"""
Core data model and plan cache for the FFT kernel planner.

this module holds the immutable values that flow through planning (sizes,
device profiles, kernel descriptors, plans) and the process-wide cache that
memoizes finished plans.
"""

import enum
import math
import numbers
import threading
import time
import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterator, Optional, Sequence, Tuple, Union

from .errors import ConfigurationError, FFTPlanError, ResourceError
from .radix import BALANCED_RADICES, is_power_of_two

logger = logging.getLogger("clfftplan.core")

# base-case transforms available in the program preamble
SUPPORTED_REGISTER_RADICES = (2, 4, 8, 16, 32)

_cache_lock = threading.RLock()  # guards the plan dict and the per-key locks


class Axis(enum.Enum):
    X = 0
    Y = 1
    Z = 2


class DataFormat(enum.Enum):
    SPLIT_PLANAR = "split_planar"
    INTERLEAVED = "interleaved"


class Direction(enum.Enum):
    """Transform direction; the value is the sign of the twiddle exponent."""
    FORWARD = -1
    INVERSE = 1

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class TransformSize:
    """
    Extent of a 1D, 2D or 3D power-of-two transform.

    x is the fastest-varying (contiguous) axis. Trailing extents of 1 are
    dropped when computing the dimension, so (256, 1) is a 1D transform.
    """
    x: int
    y: int = 1
    z: int = 1

    def __post_init__(self):
        for axis, extent in zip(Axis, (self.x, self.y, self.z)):
            if isinstance(extent, bool) or not isinstance(extent, numbers.Integral):
                raise ConfigurationError(f"extent must be an integer, got {extent!r}",
                                         axis=axis, size=extent)
            extent = int(extent)
            # numpy integers are stored as plain ints
            object.__setattr__(self, axis.name.lower(), extent)
            if extent <= 0:
                raise ConfigurationError("extent must be positive", axis=axis, size=extent)
            if not is_power_of_two(extent):
                raise ConfigurationError("extent must be a power of two", axis=axis, size=extent)

    @classmethod
    def from_dims(cls, dims: Sequence[int]) -> 'TransformSize':
        """Build from extents listed x first, e.g. (columns, rows, layers)."""
        dims = tuple(dims)
        if not 1 <= len(dims) <= 3:
            raise ConfigurationError(f"FFT dimensions must be 1, 2 or 3, got {len(dims)}",
                                     size=len(dims))
        return cls(*dims)

    @classmethod
    def coerce(cls, value: Union['TransformSize', int, Sequence[int]]) -> 'TransformSize':
        if isinstance(value, TransformSize):
            return value
        if isinstance(value, numbers.Integral):
            return cls(value)
        return cls.from_dims(value)

    @property
    def dims(self) -> Tuple[int, int, int]:
        return (self.x, self.y, self.z)

    @property
    def dimension(self) -> int:
        if self.z > 1:
            return 3
        if self.y > 1:
            return 2
        return 1

    @property
    def points(self) -> int:
        return self.x * self.y * self.z

    @property
    def array_shape(self) -> Tuple[int, ...]:
        """numpy shape (slowest axis first) of the data this size describes."""
        return tuple(reversed(self.dims[:self.dimension]))

    def extent(self, axis: Axis) -> int:
        return self.dims[axis.value]

    def __str__(self) -> str:
        return f"{self.x}x{self.y}x{self.z}"


@dataclass(frozen=True)
class DeviceProfile:
    """
    Device limits that shape the generated kernels.

    Defaults describe a typical discrete GPU with 16 local memory banks and
    a 16 work item coalescing width.
    """
    max_work_items_per_work_group: int = 256
    max_radix: int = 16
    mem_coalesce_width: int = 16
    local_mem_banks: int = 16
    max_local_memory_elements: int = 8192
    max_localmem_fft_size: int = 2048
    global_base_radix: int = 128
    min_work_items_per_work_group: int = 64

    def __post_init__(self):
        for name in ('max_work_items_per_work_group', 'mem_coalesce_width',
                     'local_mem_banks', 'global_base_radix', 'min_work_items_per_work_group'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or not is_power_of_two(value):
                raise ConfigurationError(f"{name} must be a power of two, got {value!r}")
        if self.max_radix not in SUPPORTED_REGISTER_RADICES:
            raise ConfigurationError(
                f"max_radix must be one of {SUPPORTED_REGISTER_RADICES}, got {self.max_radix}")
        if self.global_base_radix < 2:
            raise ConfigurationError("global_base_radix must be at least 2")
        if not (is_power_of_two(self.max_localmem_fft_size)
                and self.max_localmem_fft_size <= max(BALANCED_RADICES)):
            raise ConfigurationError(
                f"max_localmem_fft_size must be a power of two up to {max(BALANCED_RADICES)}, "
                f"got {self.max_localmem_fft_size}")
        if self.max_local_memory_elements <= 0:
            raise ConfigurationError("max_local_memory_elements must be positive")
        if self.max_work_items_per_work_group < self.mem_coalesce_width:
            raise ResourceError(
                f"{self.max_work_items_per_work_group} work items per work group is below "
                f"the coalescing width {self.mem_coalesce_width}")

    @property
    def capacity(self) -> int:
        return self.max_work_items_per_work_group

    @property
    def target_work_group_size(self) -> int:
        """Occupancy target for packing short transforms into one work group."""
        return min(self.min_work_items_per_work_group, self.max_work_items_per_work_group)

    def with_capacity(self, capacity: int) -> 'DeviceProfile':
        return replace(self, max_work_items_per_work_group=capacity)


@dataclass(frozen=True)
class WorkDimensions:
    """Launch shape handed to the runtime."""
    batch_size: int
    global_work_items: int
    local_work_items: int


@dataclass(frozen=True)
class KernelDescriptor:
    """
    One synthesized kernel.

    The source is a braced kernel body that still carries the direction,
    batch and scale placeholders; see :mod:`clfftplan.interface` for the
    substitution step.
    """
    name: str
    source: str
    axis: Axis
    regime: str
    pass_index: int
    radices: Tuple[int, ...]
    num_work_groups: int
    num_work_items_per_work_group: int
    num_crossings_per_work_group: int
    work_items_per_transform: int
    registers_per_work_item: int
    batch_size: int
    in_place_possible: bool
    min_local_memory_elements: int

    @property
    def pass_radix(self) -> int:
        if self.regime == 'local':
            return max(self.radices)
        return self.radices[self.pass_index]

    @property
    def global_work_items(self) -> int:
        return self.num_work_groups * self.num_work_items_per_work_group

    def work_dimensions(self, batch_size: Optional[int] = None) -> WorkDimensions:
        """Launch shape for a batch count other than the planned one."""
        if batch_size is None:
            batch_size = self.batch_size
        if self.axis is Axis.X:
            multiplier = math.ceil(batch_size / self.num_crossings_per_work_group)
        else:
            multiplier = batch_size
        groups = self.num_work_groups * multiplier
        return WorkDimensions(batch_size, groups * self.num_work_items_per_work_group,
                              self.num_work_items_per_work_group)


@dataclass(frozen=True)
class Plan:
    """Ordered kernels that compute the whole transform when run in sequence."""
    size: TransformSize
    data_format: DataFormat
    profile: DeviceProfile
    kernels: Tuple[KernelDescriptor, ...]

    def __len__(self) -> int:
        return len(self.kernels)

    def __iter__(self) -> Iterator[KernelDescriptor]:
        return iter(self.kernels)

    def __getitem__(self, index: int) -> KernelDescriptor:
        return self.kernels[index]

    @property
    def kernel_names(self) -> Tuple[str, ...]:
        return tuple(k.name for k in self.kernels)

    @property
    def sources(self) -> Tuple[str, ...]:
        return tuple(k.source for k in self.kernels)

    @property
    def work_dimensions(self) -> Tuple[WorkDimensions, ...]:
        return tuple(k.work_dimensions() for k in self.kernels)

    @property
    def axes(self) -> Tuple[Axis, ...]:
        return tuple(k.axis for k in self.kernels)

    def describe(self) -> str:
        lines = [f"FFT plan {self.size} ({self.data_format.value}, "
                 f"{self.profile.capacity} work items/group): {len(self.kernels)} kernels"]
        for k in self.kernels:
            lines.append(
                f"  {k.name}: axis={k.axis.name} {k.regime} radices={k.radices} "
                f"groups={k.num_work_groups} items={k.num_work_items_per_work_group} "
                f"crossings={k.num_crossings_per_work_group} lmem={k.min_local_memory_elements} "
                f"in_place={k.in_place_possible}")
        return "\n".join(lines)


# default device profile; replaced by the package configuration
DEFAULT_PROFILE = DeviceProfile()
DEFAULT_DATA_FORMAT = DataFormat.SPLIT_PLANAR


class PlanCache:
    """
    Process-wide memo of finished plans.

    Keys are (TransformSize, DataFormat, DeviceProfile); the capacity is part
    of the profile. Plans are never evicted, the realistic key space is small.
    """
    # static caches
    _plans: Dict[Tuple, Plan] = {}
    _key_locks: Dict[Tuple, threading.Lock] = {}

    _performance_metrics = {
        'calls': 0,
        'cache_hits': 0,
        'cache_misses': 0,
        'planning_time': 0.0,
    }

    @classmethod
    def get_plan(cls, size: TransformSize, data_format: DataFormat = DataFormat.SPLIT_PLANAR,
                 profile: Optional[DeviceProfile] = None) -> Plan:
        """
        Return the cached plan for this key, planning it on first request.

        Concurrent requests for the same key wait for the first planner;
        distinct keys plan in parallel.
        """
        if profile is None:
            profile = DEFAULT_PROFILE
        key = (size, data_format, profile)

        with _cache_lock:
            cls._performance_metrics['calls'] += 1
            plan = cls._plans.get(key)
            if plan is not None:
                cls._performance_metrics['cache_hits'] += 1
                return plan
            key_lock = cls._key_locks.setdefault(key, threading.Lock())

        with key_lock:
            with _cache_lock:
                plan = cls._plans.get(key)
                if plan is not None:
                    cls._performance_metrics['cache_hits'] += 1
                    return plan

            from .planning import Planner

            start_time = time.time()
            try:
                plan = Planner(size, data_format, profile).plan()
            except FFTPlanError as e:
                logger.warning(f"Planning failed for {size}: {e}")
                raise
            planning_time = time.time() - start_time

            with _cache_lock:
                cls._plans[key] = plan
                cls._performance_metrics['cache_misses'] += 1
                cls._performance_metrics['planning_time'] += planning_time
            logger.debug(f"Planned {size} in {planning_time * 1000:.2f} ms ({len(plan)} kernels)")
            return plan

    @classmethod
    def contains(cls, size: TransformSize, data_format: DataFormat = DataFormat.SPLIT_PLANAR,
                 profile: Optional[DeviceProfile] = None) -> bool:
        with _cache_lock:
            return (size, data_format, profile or DEFAULT_PROFILE) in cls._plans

    @classmethod
    def clear_cache(cls):
        """Drop every cached plan and reset the counters."""
        with _cache_lock:
            cls._plans.clear()
            cls._key_locks.clear()
            for key in cls._performance_metrics:
                cls._performance_metrics[key] = 0 if isinstance(cls._performance_metrics[key], int) else 0.0

    @classmethod
    def get_stats(cls) -> Dict:
        """Get statistics about the plan cache."""
        with _cache_lock:
            stats = cls._performance_metrics.copy()
            stats['total_plans'] = len(cls._plans)
            stats['total_kernels'] = sum(len(p) for p in cls._plans.values())
            if stats['calls'] > 0:
                stats['cache_hit_rate'] = stats['cache_hits'] / stats['calls']
            return stats


def get_default_profile() -> DeviceProfile:
    return DEFAULT_PROFILE


def set_default_profile(profile: DeviceProfile):
    """Replace the profile used when callers do not pass one."""
    global DEFAULT_PROFILE
    if not isinstance(profile, DeviceProfile):
        raise TypeError(f"expected DeviceProfile, got {type(profile).__name__}")
    DEFAULT_PROFILE = profile


def plan_fft(size, data_format: Optional[DataFormat] = None,
             capacity: Optional[int] = None,
             profile: Optional[DeviceProfile] = None) -> Plan:
    """
    Plan (or fetch from cache) the kernels for a transform.

    Args:
        size: TransformSize, a single length, or extents listed x first
        data_format: How complex values are laid out in memory (None = package default)
        capacity: Maximum work items per work group (None = profile default)
        profile: Device limits (None = package default)

    Returns:
        The immutable Plan
    """
    size = TransformSize.coerce(size)
    if data_format is None:
        data_format = DEFAULT_DATA_FORMAT
    data_format = DataFormat(data_format)
    if profile is None:
        profile = DEFAULT_PROFILE
    if capacity is not None and capacity != profile.capacity:
        profile = profile.with_capacity(capacity)
    return PlanCache.get_plan(size, data_format, profile)


def get_stats():
    """Get statistics about the plan cache."""
    return PlanCache.get_stats()


def clear_cache():
    """Clear the plan cache."""
    PlanCache.clear_cache()
