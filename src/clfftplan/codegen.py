"""
Instruction representation for generated kernel bodies.

Builders describe a kernel as a list of small fragments (load a register,
run a base-case transform, rotate by a twiddle, shuffle through local memory)
and :func:`assemble` turns that list into OpenCL text in one place. Buffer
access is the only part that depends on the data format, so it is resolved
here rather than in the builders.
"""

import re
from contextlib import contextmanager
from typing import List, NamedTuple, Optional, Sequence, Tuple

from .core import DataFormat
from .errors import InternalInvariantError

# Placeholders left in generated text for the downstream substitution pass
DIRECTION = "%DIRECTION%"
DIRECTION_NAME = "%DIRECTION_NAME%"
BATCH = "%BATCH%"
SCALE = "%SCALE%"

PLACEHOLDER_PATTERN = re.compile(r"%(DIRECTION_NAME|DIRECTION|BATCH|SCALE)%")

INDENT = "    "


class Statement(NamedTuple):
    text: str


class Barrier(NamedTuple):
    pass


class BaseCase(NamedTuple):
    """In-register transform of `radix` consecutive registers starting at `offset`."""
    radix: int
    offset: int = 0


class Twiddle(NamedTuple):
    """Rotate register `register` by the angle expression `angle`."""
    register: int
    angle: str


class Load(NamedTuple):
    register: int
    offset: int


class Store(NamedTuple):
    register: int
    offset: int


class AdvancePointers(NamedTuple):
    """Move the input or output buffer pointers by `expr` complex elements."""
    which: str
    expr: str


class Shuffle(NamedTuple):
    """
    Redistribute registers among work items through local memory.

    `stores` holds (local offset, register) pairs written through
    `store_ptr`; `loads` holds (register, local offset) pairs read back
    through `load_ptr`. Each complex component makes one round trip and
    every write and every read is followed by a barrier.
    """
    stores: Tuple[Tuple[int, int], ...]
    loads: Tuple[Tuple[int, int], ...]
    store_ptr: str = "lmem_store"
    load_ptr: str = "lmem_load"


class Block(NamedTuple):
    condition: str
    body: Tuple
    orelse: Tuple = ()


class KernelSource:
    """
    Accumulates fragments for one kernel body.

    Conditional sections are opened with :meth:`branch` and, optionally,
    continued with :meth:`otherwise`::

        with src.branch("jj < s"):
            src.load(0, 0)
        with src.otherwise():
            src.load(0, 16)
    """

    def __init__(self):
        self._stack: List[List] = [[]]

    @property
    def fragments(self) -> Tuple:
        if len(self._stack) != 1:
            raise InternalInvariantError("unclosed conditional block in kernel source")
        return tuple(self._stack[0])

    def _emit(self, fragment):
        self._stack[-1].append(fragment)

    def statement(self, *lines: str):
        for line in lines:
            self._emit(Statement(line))

    def barrier(self):
        self._emit(Barrier())

    def base_case(self, radix: int, offset: int = 0):
        self._emit(BaseCase(radix, offset))

    def twiddle(self, register: int, angle: str):
        self._emit(Twiddle(register, angle))

    def load(self, register: int, offset: int):
        self._emit(Load(register, offset))

    def store(self, register: int, offset: int):
        self._emit(Store(register, offset))

    def advance_input(self, expr: str):
        self._emit(AdvancePointers("in", expr))

    def advance_output(self, expr: str):
        self._emit(AdvancePointers("out", expr))

    def shuffle(self, stores: Sequence[Tuple[int, int]], loads: Sequence[Tuple[int, int]],
                store_ptr: str = "lmem_store", load_ptr: str = "lmem_load"):
        self._emit(Shuffle(tuple(stores), tuple(loads), store_ptr, load_ptr))

    @contextmanager
    def branch(self, condition: str):
        self._stack.append([])
        try:
            yield self
        finally:
            body = self._stack.pop()
        self._emit(Block(condition, tuple(body)))

    @contextmanager
    def otherwise(self):
        current = self._stack[-1]
        if not current or not isinstance(current[-1], Block) or current[-1].orelse:
            raise InternalInvariantError("else branch without a preceding conditional block")
        self._stack.append([])
        try:
            yield self
        finally:
            orelse = self._stack.pop()
        block = current.pop()
        self._emit(block._replace(orelse=tuple(orelse)))


def count_barriers(fragments) -> int:
    """Number of barrier instructions the fragments render to."""
    total = 0
    for fragment in fragments:
        if isinstance(fragment, Barrier):
            total += 1
        elif isinstance(fragment, Shuffle):
            total += 4
        elif isinstance(fragment, Block):
            total += count_barriers(fragment.body) + count_barriers(fragment.orelse)
    return total


def _buffer_names(which: str, data_format: DataFormat) -> Tuple[str, ...]:
    if data_format is DataFormat.SPLIT_PLANAR:
        return (f"{which}_re", f"{which}_im")
    return (which,)


def _render(fragments, data_format: DataFormat, depth: int, lines: List[str]):
    pad = INDENT * depth
    for fragment in fragments:
        if isinstance(fragment, Statement):
            lines.append(pad + fragment.text)
        elif isinstance(fragment, Barrier):
            lines.append(pad + "barrier(CLK_LOCAL_MEM_FENCE);")
        elif isinstance(fragment, BaseCase):
            target = "a" if fragment.offset == 0 else f"a + {fragment.offset}"
            lines.append(pad + f"fftKernel{fragment.radix}({target}, dir);")
        elif isinstance(fragment, Twiddle):
            reg = fragment.register
            lines.append(pad + f"ang = {fragment.angle};")
            lines.append(pad + "w = (float2)(native_cos(ang), native_sin(ang));")
            lines.append(pad + f"a[{reg}] = complexMul(a[{reg}], w);")
        elif isinstance(fragment, Load):
            if data_format is DataFormat.SPLIT_PLANAR:
                lines.append(pad + f"a[{fragment.register}] = "
                             f"(float2)(in_re[{fragment.offset}], in_im[{fragment.offset}]);")
            else:
                lines.append(pad + f"a[{fragment.register}] = in[{fragment.offset}];")
        elif isinstance(fragment, Store):
            reg, off = fragment.register, fragment.offset
            if data_format is DataFormat.SPLIT_PLANAR:
                lines.append(pad + f"out_re[{off}] = {SCALE}a[{reg}].x;")
                lines.append(pad + f"out_im[{off}] = {SCALE}a[{reg}].y;")
            else:
                lines.append(pad + f"out[{off}] = {SCALE}a[{reg}];")
        elif isinstance(fragment, AdvancePointers):
            for name in _buffer_names(fragment.which, data_format):
                lines.append(pad + f"{name} += {fragment.expr};")
        elif isinstance(fragment, Shuffle):
            for comp in ("x", "y"):
                for off, reg in fragment.stores:
                    lines.append(pad + f"{fragment.store_ptr}[{off}] = a[{reg}].{comp};")
                lines.append(pad + "barrier(CLK_LOCAL_MEM_FENCE);")
                for reg, off in fragment.loads:
                    lines.append(pad + f"a[{reg}].{comp} = {fragment.load_ptr}[{off}];")
                lines.append(pad + "barrier(CLK_LOCAL_MEM_FENCE);")
        elif isinstance(fragment, Block):
            lines.append(pad + f"if ({fragment.condition}) {{")
            _render(fragment.body, data_format, depth + 1, lines)
            if fragment.orelse:
                lines.append(pad + "} else {")
                _render(fragment.orelse, data_format, depth + 1, lines)
            lines.append(pad + "}")
        else:
            raise InternalInvariantError(f"unknown kernel fragment {fragment!r}")


def assemble(fragments, data_format: DataFormat, preamble: Optional[Sequence[str]] = None) -> str:
    """
    Render a braced kernel body.

    Args:
        fragments: Fragments produced by a KernelSource
        data_format: Buffer layout used by loads, stores and pointer moves
        preamble: Declarations emitted before the fragments

    Returns:
        Source text still carrying the direction, batch and scale placeholders
    """
    lines = ["{"]
    for line in preamble or ():
        lines.append(INDENT + line)
    _render(fragments, data_format, 1, lines)
    lines.append("}")
    return "\n".join(lines) + "\n"


def placeholders(text: str) -> Tuple[str, ...]:
    """Placeholders still present in text, in order of appearance."""
    return tuple(m.group(0) for m in PLACEHOLDER_PATTERN.finditer(text))
