import re
import unittest

from clfftplan import DataFormat, Direction, Planner
from clfftplan.codegen import PLACEHOLDER_PATTERN
from clfftplan.interface import (
    FFT_DEFINES, kernel_name, kernel_source, launch_shapes, program_source, render,
)


class TestRender(unittest.TestCase):

    def test_render_resolves_every_placeholder(self):
        text = "%DIRECTION% %DIRECTION_NAME% %BATCH% x = %SCALE%y;"
        self.assertEqual(render(text, Direction.FORWARD, 8), "-1 forward 8 x = y;")
        self.assertEqual(render(text, Direction.INVERSE, 3, scale=0.5),
                         "1 inverse 3 x = 0.5f * y;")

    def test_render_accepts_integer_direction(self):
        self.assertEqual(render("%DIRECTION_NAME%", 1, 1), "inverse")
        self.assertEqual(render("%DIRECTION_NAME%", -1, 1), "forward")
        with self.assertRaises(ValueError):
            render("%DIRECTION%", 0, 1)

    def test_render_rejects_empty_batch(self):
        with self.assertRaises(ValueError):
            render("%BATCH%", Direction.FORWARD, 0)

    def test_unrelated_percent_signs_survive(self):
        self.assertEqual(render("a % b %BATCH%", Direction.FORWARD, 2), "a % b 2")


class TestKernelSource(unittest.TestCase):

    def test_kernel_name(self):
        kernel = Planner(256).plan()[0]
        self.assertEqual(kernel_name(kernel, Direction.FORWARD),
                         "fft0_256x1x1_X_radix_4_4_4_4_S1_forward")
        self.assertEqual(kernel_name(kernel, Direction.INVERSE, batch_size=16),
                         "fft0_256x1x1_X_radix_4_4_4_4_S16_inverse")

    def test_split_planar_signature(self):
        kernel = Planner((64, 32)).plan()[0]
        source = kernel_source(kernel, Direction.FORWARD)
        first_line = source.splitlines()[0]
        self.assertEqual(first_line,
                         "__kernel void fft0_64x32x1_X_radix_8_8_S32_forward("
                         "__global float *in_re, __global float *in_im, "
                         "__global float *out_re, __global float *out_im)")
        self.assertIn("const int dir = -1;", source)
        self.assertIn("const int S = 32;", source)
        self.assertIsNone(PLACEHOLDER_PATTERN.search(source))
        self.assertTrue(source.rstrip().endswith("}"))

    def test_interleaved_signature(self):
        kernel = Planner(1024, DataFormat.INTERLEAVED).plan()[0]
        source = kernel_source(kernel, Direction.INVERSE, DataFormat.INTERLEAVED)
        self.assertIn("(__global float2 *in, __global float2 *out)", source.splitlines()[0])
        self.assertIn("const int dir = 1;", source)

    def test_scaled_stores(self):
        kernel = Planner(256).plan()[0]
        source = kernel_source(kernel, Direction.INVERSE, scale=0.25)
        self.assertIn("out_re[0] = 0.25f * a[0].x;", source)


class TestProgramSource(unittest.TestCase):

    def test_program_contains_preamble_and_every_kernel(self):
        plan = Planner((1024, 512)).plan()
        source = program_source(plan, Direction.FORWARD)
        self.assertTrue(source.startswith(FFT_DEFINES))
        self.assertEqual(source.count("__kernel void "), 3)
        for kernel in plan:
            self.assertIn(kernel_name(kernel, Direction.FORWARD), source)
        self.assertIsNone(PLACEHOLDER_PATTERN.search(source))

    def test_preamble_defines_every_base_case(self):
        for radix in (2, 4, 8, 16, 32):
            self.assertIn(f"#define fftKernel{radix}(a,dir)", FFT_DEFINES)
        self.assertIn("#define complexMul(a,b)", FFT_DEFINES)

    def test_base_cases_used_are_defined(self):
        plan = Planner((4096, 64)).plan()
        source = program_source(plan, Direction.FORWARD)
        for radix in set(re.findall(r"fftKernel(\d+)\(a", source)):
            self.assertIn(f"#define fftKernel{radix}(a,dir)", source)

    def test_normalize_scales_only_the_last_kernel(self):
        plan = Planner(4096).plan()
        source = program_source(plan, Direction.INVERSE, normalize=True)
        self.assertEqual(source.count(f"{1.0 / 4096!r}f * "), 2 * 8)
        plain = program_source(plan, Direction.INVERSE)
        self.assertNotIn("f * a[", plain)

    def test_launch_shapes(self):
        plan = Planner((64, 32, 16)).plan()
        shapes = launch_shapes(plan)
        self.assertEqual(len(shapes), 3)
        for (global_size, local_size), kernel in zip(shapes, plan):
            self.assertEqual(local_size, (kernel.num_work_items_per_work_group,))
            self.assertEqual(global_size[0] % local_size[0], 0)
        # 512 transforms, 8 per work group of 64
        self.assertEqual(shapes[0], ((64 * 64,), (64,)))


if __name__ == '__main__':
    unittest.main()
