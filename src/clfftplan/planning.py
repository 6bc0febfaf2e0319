"""
Axis-by-axis planning of FFT kernel sequences.

this module decides, for each non-trivial axis, whether the transform fits the
local-memory regime or needs one global pass per radix, then names and
freezes the kernels in execution order.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from .codegen import BATCH, DIRECTION_NAME, assemble
from .core import (Axis, DataFormat, DeviceProfile, KernelDescriptor, Plan, TransformSize,
                   get_default_profile)
from .errors import FFTPlanError, InternalInvariantError, ResourceError
from .kernels import GlobalMemoryKernelBuilder, KernelDraft, LocalMemoryKernelBuilder
from .radix import decompose_local, is_power_of_two, radix_suffix

# set up logging
logger = logging.getLogger("clfftplan.planning")

REGIME_LOCAL = 'local'
REGIME_GLOBAL = 'global'


def kernel_base_name(index: int, size: TransformSize, axis: Axis, radices: Sequence[int]) -> str:
    """Kernel name before the batch and direction placeholders are resolved."""
    return f"fft{index}_{size}_{axis.name}{radix_suffix(radices)}_S{BATCH}_{DIRECTION_NAME}"


def choose_regime(n: int, profile: DeviceProfile) -> str:
    """
    Regime for an X-axis transform of length n.

    Y and Z always use the global regime; their transforms are strided
    batches regardless of length.
    """
    if n > profile.max_localmem_fft_size:
        return REGIME_GLOBAL
    radices = decompose_local(n, profile.max_radix, profile.capacity)
    if n // radices[0] <= profile.capacity:
        return REGIME_LOCAL
    return REGIME_GLOBAL


def batch_size(size: TransformSize, axis: Axis) -> int:
    """
    Transforms per launch for a pass along axis.

    Inner axes of a Y or Z pass are folded into the vertical stride, so only
    the outer axes count towards the batch.
    """
    if axis is Axis.X:
        return size.y * size.z
    if axis is Axis.Y:
        return size.z
    return 1


class Planner:
    """
    Build the complete kernel sequence for one transform.

    Example:
        >>> plan = Planner(TransformSize(1024, 512)).plan()
        >>> [k.axis.name for k in plan]
        ['X', 'Y', 'Y']
    """

    def __init__(self, size, data_format: DataFormat = DataFormat.SPLIT_PLANAR,
                 profile: Optional[DeviceProfile] = None):
        self.size = TransformSize.coerce(size)
        self.data_format = data_format
        self.profile = profile if profile is not None else get_default_profile()

    def plan(self) -> Plan:
        kernels: List[KernelDescriptor] = []
        for axis in Axis:
            n = self.size.extent(axis)
            if n == 1:
                continue
            for draft in self._build_axis(axis, n):
                kernels.append(self._freeze(draft, len(kernels)))

        if not kernels:
            logger.debug(f"Size {self.size} is trivial, plan has no kernels")
        return Plan(self.size, self.data_format, self.profile, tuple(kernels))

    def _build_axis(self, axis: Axis, n: int) -> List[KernelDraft]:
        if not is_power_of_two(n):
            # TransformSize validates extents, reaching this is a defect
            raise InternalInvariantError("extent is not a power of two", axis=axis, size=n)

        if axis is Axis.X:
            regime = choose_regime(n, self.profile)
            if regime == REGIME_LOCAL:
                try:
                    return [LocalMemoryKernelBuilder(n, self.profile).build()]
                except ResourceError as e:
                    logger.debug(f"Local-memory kernel does not fit ({e.reason}), "
                                 f"using global passes for {n}")
            logger.debug(f"X axis length {n}: global regime")
            return GlobalMemoryKernelBuilder(n, Axis.X, self.profile).build()

        if axis is Axis.Y:
            stride = self.size.x
        elif axis is Axis.Z:
            stride = self.size.x * self.size.y
        else:
            raise InternalInvariantError(f"no regime for axis {axis!r}", size=n)
        logger.debug(f"{axis.name} axis length {n}: global regime, vertical stride {stride}")
        return GlobalMemoryKernelBuilder(n, axis, self.profile, stride).build()

    def _freeze(self, draft: KernelDraft, index: int) -> KernelDescriptor:
        source = assemble(draft.source.fragments, self.data_format, draft.declarations())
        return KernelDescriptor(
            name=kernel_base_name(index, self.size, draft.axis, draft.radices),
            source=source,
            axis=draft.axis,
            regime=draft.regime,
            pass_index=draft.pass_index,
            radices=draft.radices,
            num_work_groups=draft.num_work_groups,
            num_work_items_per_work_group=draft.num_work_items_per_work_group,
            num_crossings_per_work_group=draft.num_crossings_per_work_group,
            work_items_per_transform=draft.work_items_per_transform,
            registers_per_work_item=draft.registers_per_work_item,
            batch_size=batch_size(self.size, draft.axis),
            in_place_possible=draft.in_place_possible,
            min_local_memory_elements=draft.min_local_memory_elements,
        )


def next_power_of_two(n: int) -> int:
    """Smallest power of two not below n."""
    if n < 1:
        raise ValueError(f"size must be positive, got {n}")
    result = 1
    while result < n:
        result *= 2
    return result


def padded_transform_size(shape: Sequence[int]) -> Tuple[int, ...]:
    """
    Smallest supported shape that holds `shape`.

    Callers with non-power-of-two data (e.g. FFT convolution of an image with
    a filter) zero-pad to this shape before planning.

    Args:
        shape: Extents in any order

    Returns:
        Shape tuple with every extent rounded up to a power of two
    """
    return tuple(next_power_of_two(dim) for dim in shape)


def is_supported(size) -> bool:
    """True if the size can be planned with the default profile."""
    try:
        Planner(size).plan()
    except FFTPlanError:
        return False
    return True
