import unittest

import numpy as np
import scipy.fft

from clfftplan import ConfigurationError, DataFormat, DeviceProfile, Direction, Planner
from clfftplan.reference import (
    execute_plan, random_signal, reference_fft, stockham_pass, transform_axis,
)


def relative_error(actual, expected):
    return np.max(np.abs(actual - expected)) / np.max(np.abs(expected))


class TestStockhamModel(unittest.TestCase):

    def test_single_pass_is_a_dft(self):
        x = random_signal((8,), seed=1).astype(np.complex128)
        out = stockham_pass(x, 8, 1)
        self.assertLess(relative_error(out, np.fft.fft(x)), 1e-12)

    def test_any_decomposition_gives_natural_order(self):
        x = random_signal((3, 64), seed=2).astype(np.complex128)
        for radices in [(64,), (8, 8), (2, 32), (4, 2, 8), (2, 2, 2, 2, 2, 2)]:
            out = transform_axis(x, radices)
            self.assertLess(relative_error(out, np.fft.fft(x, axis=-1)), 1e-12, radices)

    def test_inverse_direction(self):
        x = random_signal((32,), seed=3).astype(np.complex128)
        out = transform_axis(x, (4, 8), Direction.INVERSE)
        self.assertLess(relative_error(out, np.fft.ifft(x) * 32), 1e-12)

    def test_other_axis(self):
        x = random_signal((16, 4), seed=4).astype(np.complex128)
        out = transform_axis(x, (4, 4), axis=0)
        self.assertLess(relative_error(out, np.fft.fft(x, axis=0)), 1e-12)

    def test_pass_must_divide_length(self):
        with self.assertRaises(ConfigurationError):
            stockham_pass(np.zeros(16, dtype=np.complex128), 8, 4)


class TestPlansMatchFFTW(unittest.TestCase):

    def check(self, dims, profile=None, data_format=DataFormat.SPLIT_PLANAR):
        plan = Planner(dims, data_format, profile).plan()
        x = random_signal(plan.size.array_shape, seed=sum(plan.size.dims))
        for direction in Direction:
            out = execute_plan(plan, x, direction)
            self.assertLess(relative_error(out, reference_fft(x, direction)), 1e-9,
                            f"{plan.size} {direction.label}")

    def test_one_dimensional(self):
        for n in (2, 16, 256, 1024, 2048, 4096, 65536):
            self.check((n,))

    def test_two_dimensional(self):
        self.check((128, 512))
        self.check((1024, 8))
        self.check((1, 256))

    def test_three_dimensional(self):
        self.check((32, 16, 256))
        self.check((8, 8, 8))

    def test_other_profiles(self):
        self.check((2048,), DeviceProfile(global_base_radix=64, max_local_memory_elements=2000))
        profile = DeviceProfile(max_work_items_per_work_group=32, max_radix=8, global_base_radix=64)
        self.check((1024, 64), profile)
        self.check((8192,), DeviceProfile(global_base_radix=16))
        self.check((4096,), DeviceProfile(max_radix=8))
        self.check((65536,), DeviceProfile(max_radix=4))

    def test_agrees_with_scipy(self):
        plan = Planner((64, 32)).plan()
        x = random_signal(plan.size.array_shape, seed=7)
        self.assertLess(relative_error(execute_plan(plan, x), scipy.fft.fftn(x)), 1e-6)

    def test_round_trip(self):
        plan = Planner((256, 64)).plan()
        x = random_signal(plan.size.array_shape, seed=8)
        spectrum = execute_plan(plan, x, Direction.FORWARD)
        back = execute_plan(plan, spectrum, Direction.INVERSE, normalize=True)
        self.assertLess(relative_error(back, x), 1e-9)

    def test_shape_must_match(self):
        plan = Planner((64, 32)).plan()
        with self.assertRaises(ConfigurationError):
            execute_plan(plan, np.zeros((64, 32), dtype=np.complex64))


class TestSignals(unittest.TestCase):

    def test_random_signal(self):
        x = random_signal((4, 8), seed=5)
        self.assertEqual(x.shape, (4, 8))
        self.assertEqual(x.dtype, np.complex64)
        np.testing.assert_array_equal(x, random_signal((4, 8), seed=5))
        self.assertFalse(np.array_equal(x, random_signal((4, 8), seed=6)))


if __name__ == '__main__':
    unittest.main()
