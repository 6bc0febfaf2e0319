"""
Kernel builders for the two FFT regimes.

LocalMemoryKernelBuilder emits a single kernel that computes whole transforms
inside one work group, passing data between radix stages through padded
local memory. GlobalMemoryKernelBuilder emits one kernel per radix pass for
transforms too long for a work group, with the Cooley-Tukey reordering
folded into each pass's input and output strides.

Both produce mutable KernelDraft objects; the planner names and freezes them.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Tuple

from .codegen import BATCH, DIRECTION, KernelSource
from .core import Axis, DeviceProfile
from .errors import ResourceError
from .radix import decompose_global, decompose_local, log2, product, radix_to_r1, split_radix

logger = logging.getLogger("clfftplan.kernels")

# tail work group with a partial set of transforms
TAIL_GROUP = "(group_id == get_num_groups(0) - 1) && s"
FULL_OR_VALID_LANE = "!s || (group_id < get_num_groups(0) - 1) || (jj < s)"


@dataclass
class KernelDraft:
    """Kernel under construction; frozen into a KernelDescriptor by the planner."""
    axis: Axis
    regime: str
    pass_index: int
    radices: Tuple[int, ...]
    registers_per_work_item: int
    work_items_per_transform: int
    num_work_groups: int
    num_work_items_per_work_group: int
    num_crossings_per_work_group: int
    in_place_possible: bool
    source: KernelSource = field(default_factory=KernelSource)
    min_local_memory_elements: int = 0

    def require_local_memory(self, elements: int):
        self.min_local_memory_elements = max(self.min_local_memory_elements, elements)

    def check_resources(self, profile: DeviceProfile, size: int):
        if self.num_work_items_per_work_group > profile.capacity:
            raise ResourceError(
                f"{self.num_work_items_per_work_group} work items per work group exceeds "
                f"capacity {profile.capacity}", axis=self.axis, size=size)
        if self.min_local_memory_elements > profile.max_local_memory_elements:
            raise ResourceError(
                f"needs {self.min_local_memory_elements} local memory elements, device has "
                f"{profile.max_local_memory_elements}", axis=self.axis, size=size)

    def declarations(self) -> List[str]:
        """Variable declarations emitted at the top of the kernel body."""
        lines = [f"const int dir = {DIRECTION};",
                 f"const int S = {BATCH};"]
        if self.min_local_memory_elements > 0:
            lines.append(f"__local float smem[{self.min_local_memory_elements}];")
        lines += [
            "int i, j, r, index_in, index_out, index, tid, b_num, x_num, k, l;",
            "int s = 0, ii, jj, offset;",
            "float2 w;",
            "float ang, angf, ang1;",
            "__local float *lmem_store, *lmem_load;",
            f"float2 a[{self.registers_per_work_item}];",
            "int lid = get_local_id(0);",
            "int group_id = get_group_id(0);",
        ]
        return lines


def local_memory_padding(work_items_per_transform: int, n_prev: int, work_items_required: int,
                         crossings: int, radix: int, banks: int) -> Tuple[int, int, int]:
    """
    Padding for one local-memory shuffle stage.

    Args:
        work_items_per_transform: Work items cooperating on one transform
        n_prev: Product of the radices already applied
        work_items_required: Transform length divided by this stage's radix
        crossings: Transforms packed into one work group
        radix: This stage's radix
        banks: Number of local memory banks

    Returns:
        Tuple of (local memory elements, row offset, padding between transforms)
    """
    if work_items_per_transform <= n_prev or n_prev >= banks:
        offset = 0
    else:
        rows_required = min(work_items_per_transform, banks) // n_prev
        offset = n_prev * min(1, rows_required // radix)

    if work_items_per_transform >= banks or crossings == 1:
        mid_pad = 0
    else:
        bank = ((work_items_required + offset) * radix) & (banks - 1)
        mid_pad = max(0, work_items_per_transform - bank)

    elements = (work_items_required + offset) * radix * crossings + mid_pad * (crossings - 1)
    return elements, offset, mid_pad


class LocalMemoryKernelBuilder:
    """
    One kernel computing a batch of length-n transforms in registers and local memory.

    The first radix sets the registers per work item and n / first radix the
    work items per transform. Short transforms are packed several to a work
    group ("crossings") until the group reaches the occupancy target.
    """

    def __init__(self, n: int, profile: DeviceProfile):
        self.n = n
        self.profile = profile
        self.radices = decompose_local(n, profile.max_radix, profile.capacity)
        self.registers = self.radices[0]
        self.work_items_per_transform = n // self.registers

        if self.work_items_per_transform > profile.capacity:
            raise ResourceError(
                f"needs {self.work_items_per_transform} work items per transform, "
                f"capacity is {profile.capacity}", axis=Axis.X, size=n)

        target = profile.target_work_group_size
        if self.work_items_per_transform <= target:
            self.work_group_size = target
        else:
            self.work_group_size = self.work_items_per_transform
        self.crossings = self.work_group_size // self.work_items_per_transform

    def build(self) -> KernelDraft:
        draft = KernelDraft(
            axis=Axis.X, regime='local', pass_index=0, radices=self.radices,
            registers_per_work_item=self.registers,
            work_items_per_transform=self.work_items_per_transform,
            num_work_groups=1,
            num_work_items_per_work_group=self.work_group_size,
            num_crossings_per_work_group=self.crossings,
            in_place_possible=True)
        src = draft.source

        draft.require_local_memory(self._global_load(src))
        self._radix_stages(src, draft)
        draft.require_local_memory(self._global_store(src))

        draft.check_resources(self.profile, self.n)
        logger.debug(f"local kernel n={self.n} radices={self.radices} "
                     f"items={self.work_group_size} crossings={self.crossings} "
                     f"lmem={draft.min_local_memory_elements}")
        return draft

    def _global_load(self, src: KernelSource) -> int:
        """Coalesced load of the first radix worth of registers; returns local memory used."""
        n = self.n
        per = self.work_items_per_transform
        crossings = self.crossings
        width = self.profile.mem_coalesce_width
        group = self.work_group_size

        if crossings > 1:
            src.statement(f"s = S & {crossings - 1};")

        if per >= width:
            if crossings > 1:
                src.statement(f"ii = lid & {per - 1};",
                              f"jj = lid >> {log2(per)};")
                with src.branch(FULL_OR_VALID_LANE):
                    src.statement(f"offset = mad24(mad24(group_id, {crossings}, jj), {n}, ii);")
                    src.advance_input("offset")
                    src.advance_output("offset")
                    for i in range(self.registers):
                        src.load(i, i * per)
            else:
                src.statement("ii = lid;",
                              "jj = 0;",
                              f"offset = mad24(group_id, {n}, ii);")
                src.advance_input("offset")
                src.advance_output("offset")
                for i in range(self.registers):
                    src.load(i, i * per)
            return 0

        row = n + per
        if n >= width:
            inner = n // width
            rows_per_iter = group // width
            outer = crossings // rows_per_iter
            src.statement(f"ii = lid & {width - 1};",
                          f"jj = lid >> {log2(width)};",
                          f"lmem_store = smem + mad24(jj, {row}, ii);",
                          f"offset = mad24(group_id, {crossings}, jj);",
                          f"offset = mad24(offset, {n}, ii);")
            src.advance_input("offset")
            src.advance_output("offset")

            with src.branch(TAIL_GROUP):
                for i in range(outer):
                    with src.branch("jj < s"):
                        for j in range(inner):
                            src.load(i * inner + j, j * width + i * rows_per_iter * n)
                    if i != outer - 1:
                        src.statement(f"jj += {rows_per_iter};")
            with src.otherwise():
                for i in range(outer):
                    for j in range(inner):
                        src.load(i * inner + j, j * width + i * rows_per_iter * n)

            src.statement(f"ii = lid & {per - 1};",
                          f"jj = lid >> {log2(per)};",
                          f"lmem_load = smem + mad24(jj, {row}, ii);")
            src.shuffle(
                stores=[(j * width + i * rows_per_iter * row, i * inner + j)
                        for i in range(outer) for j in range(inner)],
                loads=[(i, i * per) for i in range(self.registers)])
        else:
            rows_per_iter = group // n
            src.statement(f"offset = mad24(group_id, {n * crossings}, lid);")
            src.advance_input("offset")
            src.advance_output("offset")
            src.statement(f"ii = lid & {n - 1};",
                          f"jj = lid >> {log2(n)};",
                          f"lmem_store = smem + mad24(jj, {row}, ii);")

            with src.branch(TAIL_GROUP):
                for i in range(self.registers):
                    with src.branch("jj < s"):
                        src.load(i, i * group)
                    if i != self.registers - 1:
                        src.statement(f"jj += {rows_per_iter};")
            with src.otherwise():
                for i in range(self.registers):
                    src.load(i, i * group)

            if per > 1:
                src.statement(f"ii = lid & {per - 1};",
                              f"jj = lid >> {log2(per)};",
                              f"lmem_load = smem + mad24(jj, {row}, ii);")
            else:
                src.statement("ii = 0;",
                              "jj = lid;",
                              f"lmem_load = smem + mul24(jj, {row});")
            src.shuffle(
                stores=[(i * rows_per_iter * row, i) for i in range(self.registers)],
                loads=[(i, i * per) for i in range(self.registers)])

        return row * crossings

    def _radix_stages(self, src: KernelSource, draft: KernelDraft):
        n = self.n
        per = self.work_items_per_transform
        radices = self.radices
        banks = self.profile.local_mem_banks

        n_prev = 1
        length = n
        for r, radix in enumerate(radices):
            num_iter = radices[0] // radix
            required = n // radix
            for i in range(num_iter):
                src.base_case(radix, i * radix)

            if r == len(radices) - 1:
                break

            self._stage_twiddles(src, radix, num_iter, n_prev, length)

            elements, offset, mid_pad = local_memory_padding(
                per, n_prev, required, self.crossings, radix, banks)
            draft.require_local_memory(elements)

            self._stage_index_arithmetic(src, n_prev, radix, required, offset, mid_pad)
            src.shuffle(
                stores=[(k * (required + offset) + z * per, z * radix + k)
                        for z in range(num_iter) for k in range(radix)],
                loads=self._stage_loads(radix, radices[r + 1], n_prev, required, offset))

            n_prev *= radix
            length //= radix

    def _stage_twiddles(self, src: KernelSource, radix: int, num_iter: int, n_prev: int, length: int):
        per = self.work_items_per_transform
        shift = log2(n_prev)
        for z in range(num_iter):
            lane = "ii" if z == 0 else f"({z * per} + ii)"
            if n_prev > 1:
                src.statement(f"angf = (float) ({lane} >> {shift});")
            else:
                src.statement(f"angf = (float) {lane};")
            for k in range(1, radix):
                src.twiddle(z * radix + k, f"dir * (2.0f * M_PI * {k}.0f / {length}.0f) * angf")

    def _stage_index_arithmetic(self, src: KernelSource, n_prev: int, radix: int,
                                required: int, offset: int, mid_pad: int):
        per = self.work_items_per_transform
        row = required + offset
        stride = row * radix + mid_pad

        if self.crossings == 1:
            src.statement("lmem_store = smem + ii;")
        else:
            src.statement(f"lmem_store = smem + mad24(jj, {stride}, ii);")

        n_curr = n_prev * radix
        if n_curr < per:
            if n_prev == 1:
                src.statement(f"j = ii & {n_curr - 1};",
                              f"i = ii >> {log2(n_curr)};")
            else:
                src.statement(f"j = (ii & {n_curr - 1}) >> {log2(n_prev)};",
                              f"i = mad24(ii >> {log2(n_curr)}, {n_prev}, ii & {n_prev - 1});")
        else:
            if n_prev == 1:
                src.statement("j = ii;",
                              "i = 0;")
            else:
                src.statement(f"j = ii >> {log2(n_prev)};",
                              f"i = ii & {n_prev - 1};")
        if self.crossings > 1:
            src.statement(f"i = mad24(jj, {stride}, i);")
        src.statement(f"lmem_load = smem + mad24(j, {row}, i);")

    def _stage_loads(self, radix: int, next_radix: int, n_prev: int,
                     required: int, offset: int) -> List[Tuple[int, int]]:
        n = self.n
        per = self.work_items_per_transform
        inter_block_num = max(n_prev // per, 1)
        inter_block_stride = per
        vert_width = min(radix, max(per // n_prev, 1))
        vert_num = radix // vert_width
        vert_stride = (n // radix + offset) * vert_width
        iterations = max((n // next_radix) // per, 1)
        intra_block_stride = n_prev * max(per // (n_prev * radix), 1)
        stride = required // next_radix

        loads = []
        for i in range(iterations):
            row_block = i // (inter_block_num * vert_num)
            rest = i % (inter_block_num * vert_num)
            col_block = rest % inter_block_num
            vert = rest // inter_block_num
            for z in range(next_radix):
                st = (vert * vert_stride + col_block * inter_block_stride
                      + row_block * intra_block_stride + z * stride)
                loads.append((i * next_radix + z, st))
        return loads

    def _global_store(self, src: KernelSource) -> int:
        """Mirror of the global load; returns local memory used."""
        n = self.n
        per = self.work_items_per_transform
        crossings = self.crossings
        width = self.profile.mem_coalesce_width
        group = self.work_group_size
        registers = self.registers
        last = self.radices[-1]
        num_iter = registers // last

        # registers hold the last stage's outputs interleaved by base case
        order = [(i % num_iter) * last + i // num_iter for i in range(registers)]

        if per >= width:
            if crossings > 1:
                with src.branch(FULL_OR_VALID_LANE):
                    for i, reg in enumerate(order):
                        src.store(reg, i * per)
            else:
                for i, reg in enumerate(order):
                    src.store(reg, i * per)
            return 0

        row = n + per
        src.statement(f"lmem_load = smem + mad24(jj, {row}, ii);")
        if n >= width:
            inner = n // width
            rows_per_iter = group // width
            outer = crossings // rows_per_iter
            src.statement(f"ii = lid & {width - 1};",
                          f"jj = lid >> {log2(width)};",
                          f"lmem_store = smem + mad24(jj, {row}, ii);")
            src.shuffle(
                stores=[(i * per, reg) for i, reg in enumerate(order)],
                loads=[(i * inner + j, j * width + i * rows_per_iter * row)
                       for i in range(outer) for j in range(inner)],
                store_ptr="lmem_load", load_ptr="lmem_store")

            with src.branch(TAIL_GROUP):
                for i in range(outer):
                    with src.branch("jj < s"):
                        for j in range(inner):
                            src.store(i * inner + j, j * width + i * rows_per_iter * n)
                    if i != outer - 1:
                        src.statement(f"jj += {rows_per_iter};")
            with src.otherwise():
                for i in range(outer):
                    for j in range(inner):
                        src.store(i * inner + j, j * width + i * rows_per_iter * n)
        else:
            rows_per_iter = group // n
            src.statement(f"ii = lid & {n - 1};",
                          f"jj = lid >> {log2(n)};",
                          f"lmem_store = smem + mad24(jj, {row}, ii);")
            src.shuffle(
                stores=[(i * per, reg) for i, reg in enumerate(order)],
                loads=[(i, i * rows_per_iter * row) for i in range(registers)],
                store_ptr="lmem_load", load_ptr="lmem_store")

            with src.branch(TAIL_GROUP):
                for i in range(registers):
                    with src.branch("jj < s"):
                        src.store(i, i * group)
                    if i != registers - 1:
                        src.statement(f"jj += {rows_per_iter};")
            with src.otherwise():
                for i in range(registers):
                    src.store(i, i * group)

        return row * crossings


class GlobalMemoryKernelBuilder:
    """
    One kernel per Cooley-Tukey pass over global memory.

    Pass p reads its radix B at stride (product of the other radices) and
    writes at stride (product of the radices before it), which leaves the
    result in natural order after the last pass. B splits into an in-register
    R1 transform and an R2 transform across work items.

    For Y and Z passes the inner axes are folded into the stride ("vertical"
    batching): `stride` is x for Y and x*y for Z.
    """

    def __init__(self, n: int, axis: Axis, profile: DeviceProfile, stride: int = 1):
        self.n = n
        self.axis = axis
        self.profile = profile
        self.stride = stride
        self.vertical = axis is not Axis.X
        self.radices = decompose_global(n, self.base_radix(profile))

    @staticmethod
    def base_radix(profile: DeviceProfile) -> int:
        """Largest pass radix not above global_base_radix whose R1 fits max_radix."""
        base = profile.global_base_radix
        while base > 2 and radix_to_r1(base) > profile.max_radix:
            base //= 2
        if base != profile.global_base_radix:
            logger.debug(f"global base radix {profile.global_base_radix} needs more than "
                         f"{profile.max_radix} registers, using {base}")
        return base

    def build(self) -> List[KernelDraft]:
        profile = self.profile
        radices = self.radices
        num_passes = len(radices)
        rinit = self.stride if self.vertical else 1
        batch = profile.mem_coalesce_width
        if self.vertical:
            batch = min(self.stride, batch)

        drafts = []
        remaining = self.n
        for p, radix in enumerate(radices):
            r1, r2 = split_radix(radix)
            if r1 > profile.max_radix:
                raise ResourceError(
                    f"pass radix {radix} needs {r1} registers per work item, "
                    f"max radix is {profile.max_radix}", axis=self.axis, size=self.n)

            stride_in = rinit * product(radices[:p] + radices[p + 1:])
            stride_out = rinit * product(radices[:p])

            # batch carries over from the previous pass
            if r2 == 1:
                batch = profile.capacity
            batch = min(batch, stride_in)
            threads = min(batch * r2, profile.capacity)
            batch = threads // r2

            blocks_per_transform = stride_in // batch
            draft = KernelDraft(
                axis=self.axis, regime='global', pass_index=p, radices=radices,
                registers_per_work_item=r1,
                work_items_per_transform=r2,
                num_work_groups=blocks_per_transform,
                num_work_items_per_work_group=threads,
                num_crossings_per_work_group=1,
                in_place_possible=(p == num_passes - 1) and num_passes % 2 != 0)
            if stride_out == 1:
                draft.require_local_memory((radix + 1) * batch)
            elif r2 != 1:
                draft.require_local_memory(threads * r1)

            self._emit_pass(draft.source, p, radix, r1, r2, batch, threads,
                            stride_in, stride_out, remaining)
            draft.check_resources(profile, self.n)
            logger.debug(f"global pass {p} axis={self.axis.name} n={self.n} radix={radix} "
                         f"({r1}x{r2}) stride_in={stride_in} stride_out={stride_out} "
                         f"groups={blocks_per_transform} items={threads}")
            drafts.append(draft)
            remaining //= radix
        return drafts

    def _emit_pass(self, src: KernelSource, p: int, radix: int, r1: int, r2: int, batch: int,
                   threads: int, stride_in: int, stride_out: int, remaining: int):
        rinit = self.stride if self.vertical else 1
        num_passes = len(self.radices)
        num_iter = r1 // r2
        lg_stride_out = log2(stride_out)
        lg_batch = log2(batch)
        blocks_per_transform = stride_in // batch
        out_stride = radix * rinit * product(self.radices[:p])

        if self.vertical:
            lg_block = log2(self.n * self.stride)
            src.statement(
                f"x_num = group_id >> {log2(blocks_per_transform)};",
                f"group_id = group_id & {blocks_per_transform - 1};",
                f"index_in = mad24(group_id, {batch}, x_num << {lg_block});",
                f"tid = mul24(group_id, {batch});",
                f"i = tid >> {lg_stride_out};",
                f"j = tid & {stride_out - 1};",
                f"index_out = mad24(i, {out_stride}, j + (x_num << {lg_block}));",
                "b_num = group_id;")
        else:
            lg_n = log2(self.n)
            src.statement(
                f"b_num = group_id & {blocks_per_transform - 1};",
                f"x_num = group_id >> {log2(blocks_per_transform)};",
                f"index_in = mul24(b_num, {batch});",
                "tid = index_in;",
                f"i = tid >> {lg_stride_out};",
                f"j = tid & {stride_out - 1};",
                f"index_out = mad24(i, {out_stride}, j);",
                f"index_in += (x_num << {lg_n});",
                f"index_out += (x_num << {lg_n});")

        # load
        src.statement("tid = lid;",
                      f"i = tid & {batch - 1};",
                      f"j = tid >> {lg_batch};",
                      f"index_in += mad24(j, {stride_in}, i);")
        src.advance_input("index_in")
        in_step = threads // batch
        for k in range(r1):
            src.load(k, k * in_step * stride_in)
        src.base_case(r1)

        if r2 > 1:
            for k in range(1, r1):
                src.twiddle(k, f"dir * (2.0f * M_PI * {k} / {radix}) * j")
            src.statement(f"index_in = mad24(j, {threads * num_iter}, i);",
                          "lmem_store = smem + tid;",
                          "lmem_load = smem + index_in;")
            src.shuffle(
                stores=[(k * threads, k) for k in range(r1)],
                loads=[(k * r2 + t, t * batch + k * threads)
                       for k in range(num_iter) for t in range(r2)])
            for k in range(num_iter):
                src.base_case(r2, k * r2)

        # inter-pass twiddle
        if p < num_passes - 1:
            src.statement(f"l = ((b_num << {lg_batch}) + i) >> {lg_stride_out};",
                          f"k = j << {log2(r1 // r2)};",
                          f"ang1 = dir * (2.0f * M_PI / {remaining}) * l;")
            for t in range(r1):
                src.twiddle(t, f"ang1 * (k + {(t % r2) * r1 + t // r2})")

        # store
        if stride_out == 1:
            src.statement(f"lmem_store = smem + mad24(i, {radix + 1}, j << {log2(r1 // r2)});",
                          f"lmem_load = smem + mad24(tid >> {log2(radix)}, {radix + 1}, "
                          f"tid & {radix - 1});")
            stores = [(i + j * r1, i * r2 + j) for i in range(num_iter) for j in range(r2)]
            if threads >= radix:
                loads = [(i, i * (radix + 1) * (threads // radix)) for i in range(r1)]
            else:
                inner = radix // threads
                outer = r1 // inner
                loads = [(i * inner + j, j * threads + i * (radix + 1))
                         for i in range(outer) for j in range(inner)]
            src.shuffle(stores=stores, loads=loads)
            src.statement("index_out += tid;")
            src.advance_output("index_out")
            for k in range(r1):
                src.store(k, k * threads)
        else:
            src.statement(f"index_out += mad24(j, {num_iter * stride_out}, i);")
            src.advance_output("index_out")
            for k in range(r1):
                src.store(k, ((k % r2) * r1 + k // r2) * stride_out)
