import math
import unittest

import numpy as np

from clfftplan import (
    Axis, ConfigurationError, DataFormat, DeviceProfile, Planner, ResourceError, TransformSize,
    choose_regime, next_power_of_two, padded_transform_size, is_supported,
)
from clfftplan.codegen import BATCH, DIRECTION, DIRECTION_NAME, SCALE
from clfftplan.planning import batch_size


BARRIER = "barrier(CLK_LOCAL_MEM_FENCE);"


class TestTransformSize(unittest.TestCase):

    def test_dimension_drops_trailing_ones(self):
        self.assertEqual(TransformSize(256).dimension, 1)
        self.assertEqual(TransformSize(256, 1).dimension, 1)
        self.assertEqual(TransformSize(256, 2).dimension, 2)
        self.assertEqual(TransformSize(256, 1, 4).dimension, 3)

    def test_shape_and_points(self):
        size = TransformSize.from_dims((64, 32, 16))
        self.assertEqual(size.array_shape, (16, 32, 64))
        self.assertEqual(size.points, 64 * 32 * 16)
        self.assertEqual(str(size), "64x32x16")
        self.assertEqual(TransformSize(8, 4).array_shape, (4, 8))

    def test_rejections(self):
        for dims in ((0,), (-1,), (100,), (256, 100), (2, 2, 2, 2), ()):
            with self.assertRaises(ConfigurationError):
                TransformSize.from_dims(dims)

    def test_rejection_reports_axis_and_size(self):
        with self.assertRaises(ConfigurationError) as ctx:
            TransformSize(256, 100)
        self.assertEqual(ctx.exception.axis, Axis.Y)
        self.assertEqual(ctx.exception.size, 100)
        self.assertIn("unsupported size 100 on axis Y", str(ctx.exception))

    def test_configuration_error_is_value_error(self):
        with self.assertRaises(ValueError):
            TransformSize(3)

    def test_numpy_integer_extents(self):
        size = TransformSize.coerce(tuple(np.array([64, 32], dtype=np.int64)))
        self.assertEqual(size, TransformSize(64, 32))
        self.assertIs(type(size.x), int)
        self.assertEqual(TransformSize.coerce(np.int32(256)), TransformSize(256))
        self.assertEqual(Planner(np.int64(1024)).plan(), Planner(1024).plan())
        with self.assertRaises(ConfigurationError):
            TransformSize(np.int64(100))
        with self.assertRaises(ConfigurationError):
            TransformSize(64.0)


class TestDeviceProfile(unittest.TestCase):

    def test_defaults(self):
        profile = DeviceProfile()
        self.assertEqual(profile.capacity, 256)
        self.assertEqual(profile.target_work_group_size, 64)
        self.assertEqual(profile.with_capacity(32).target_work_group_size, 32)

    def test_validation(self):
        with self.assertRaises(ConfigurationError):
            DeviceProfile(max_radix=12)
        with self.assertRaises(ConfigurationError):
            DeviceProfile(max_work_items_per_work_group=100)
        with self.assertRaises(ConfigurationError):
            DeviceProfile(max_localmem_fft_size=4096)
        with self.assertRaises(ConfigurationError):
            DeviceProfile(local_mem_banks=0)
        with self.assertRaises(ResourceError):
            DeviceProfile(max_work_items_per_work_group=8)


class TestRegimes(unittest.TestCase):

    def test_choose_regime(self):
        profile = DeviceProfile()
        self.assertEqual(choose_regime(16, profile), 'local')
        self.assertEqual(choose_regime(2048, profile), 'local')
        self.assertEqual(choose_regime(4096, profile), 'global')

    def test_small_capacity_pushes_long_transforms_global(self):
        profile = DeviceProfile(max_work_items_per_work_group=64)
        self.assertEqual(choose_regime(1024, profile), 'local')
        self.assertEqual(choose_regime(2048, profile), 'global')

    def test_local_kernel_256(self):
        plan = Planner(256).plan()
        self.assertEqual(len(plan), 1)
        kernel = plan[0]
        self.assertEqual(kernel.regime, 'local')
        self.assertEqual(kernel.axis, Axis.X)
        self.assertEqual(kernel.radices, (4, 4, 4, 4))
        self.assertEqual(kernel.work_items_per_transform, 64)
        self.assertEqual(kernel.num_work_items_per_work_group, 64)
        self.assertEqual(kernel.num_crossings_per_work_group, 1)
        self.assertEqual(kernel.registers_per_work_item, 4)
        self.assertEqual(kernel.min_local_memory_elements, 272)
        self.assertTrue(kernel.in_place_possible)
        # three shuffles between four radix stages, no transposes
        self.assertEqual(kernel.source.count(BARRIER), 12)
        self.assertEqual(kernel.source.count("fftKernel4("), 4)
        self.assertIn("__local float smem[272];", kernel.source)

    def test_short_transforms_pack_crossings(self):
        kernel = Planner(16).plan()[0]
        self.assertEqual(kernel.radices, (8, 2))
        self.assertEqual(kernel.work_items_per_transform, 2)
        self.assertEqual(kernel.num_work_items_per_work_group, 64)
        self.assertEqual(kernel.num_crossings_per_work_group, 32)
        self.assertIn("s = S & 31;", kernel.source)
        # transposed load, one shuffle, transposed store
        self.assertEqual(kernel.source.count(BARRIER), 12)

    def test_global_passes_4096(self):
        plan = Planner(4096).plan()
        self.assertEqual([k.regime for k in plan], ['global', 'global'])
        first, second = plan
        self.assertEqual(first.radices, (128, 32))
        self.assertEqual((first.pass_radix, second.pass_radix), (128, 32))
        self.assertEqual(first.registers_per_work_item, 16)
        self.assertEqual(first.work_items_per_transform, 8)
        self.assertEqual(first.num_work_items_per_work_group, 128)
        self.assertEqual(first.num_work_groups, 2)
        self.assertEqual(first.min_local_memory_elements, 129 * 16)
        self.assertEqual(second.num_work_items_per_work_group, 64)
        self.assertEqual(second.num_work_groups, 8)
        self.assertEqual(second.min_local_memory_elements, 64 * 8)
        self.assertIn("ang1 = dir * (2.0f * M_PI / 4096) * l;", first.source)
        self.assertNotIn("ang1 =", second.source)

    def test_last_global_pass_without_shuffle_uses_no_local_memory(self):
        last = Planner(65536).plan()[-1]
        self.assertEqual(last.pass_radix, 4)
        self.assertEqual(last.num_work_items_per_work_group, 256)
        self.assertEqual(last.num_work_groups, 64)
        self.assertEqual(last.min_local_memory_elements, 0)
        self.assertNotIn("smem", last.source)
        self.assertNotIn(BARRIER, last.source)

    def test_y_and_z_use_vertical_global_passes(self):
        plan = Planner((64, 32, 16)).plan()
        self.assertEqual(plan.axes, (Axis.X, Axis.Y, Axis.Z))
        x, y, z = plan
        self.assertEqual(x.regime, 'local')
        self.assertEqual((y.regime, z.regime), ('global', 'global'))
        self.assertEqual(y.num_work_groups, 4)
        self.assertEqual(z.num_work_groups, 128)
        self.assertIn("x_num = group_id >> 2;", y.source)
        self.assertIn(f"index_in = mad24(group_id, 16, x_num << {int(math.log2(32 * 64))});", y.source)

    def test_fallback_to_global_when_local_memory_is_short(self):
        # the 2048-point local kernel needs 2056 elements
        profile = DeviceProfile(global_base_radix=64, max_local_memory_elements=2000)
        plan = Planner(2048, profile=profile).plan()
        self.assertEqual([k.regime for k in plan], ['global', 'global'])
        self.assertEqual(plan[0].radices, (64, 32))
        for kernel in plan:
            self.assertLessEqual(kernel.min_local_memory_elements, 2000)

    def test_resource_errors(self):
        with self.assertRaises(ResourceError):
            Planner(256, profile=DeviceProfile(max_local_memory_elements=200)).plan()
        with self.assertRaises(ResourceError) as ctx:
            Planner(4096, profile=DeviceProfile(max_local_memory_elements=100)).plan()
        self.assertEqual(ctx.exception.axis, Axis.X)
        self.assertEqual(ctx.exception.size, 4096)

    def test_small_max_radix_shrinks_global_passes(self):
        profile = DeviceProfile(max_radix=8)
        self.assertEqual(Planner(4096, profile=profile).plan()[0].radices, (64, 64))
        plan = Planner(65536, profile=profile).plan()
        self.assertEqual(plan[0].radices, (64, 64, 16))
        for kernel in plan:
            self.assertLessEqual(kernel.registers_per_work_item, 8)
        for max_radix in (2, 4):
            plan = Planner((4096, 64), profile=DeviceProfile(max_radix=max_radix)).plan()
            for kernel in plan:
                self.assertLessEqual(kernel.registers_per_work_item, max_radix)


class TestPlanProperties(unittest.TestCase):

    SIZES = [(2,), (16,), (256,), (1024,), (2048,), (4096,), (65536,), (262144,),
             (1024, 512), (16, 4096), (64, 32, 16), (8, 8, 8), (1, 64), (4096, 1, 8)]

    def test_determinism(self):
        for dims in self.SIZES:
            a = Planner(dims).plan()
            b = Planner(dims).plan()
            self.assertEqual(a.kernel_names, b.kernel_names)
            self.assertEqual(a.sources, b.sources)
            self.assertEqual(a, b)

    def test_dimension_collapse(self):
        self.assertEqual(Planner((256, 1)).plan().kernels, Planner(256).plan().kernels)
        self.assertEqual(Planner((256, 1, 1)).plan().kernels, Planner(256).plan().kernels)
        self.assertNotIn(Axis.Y, Planner((256, 1)).plan().axes)

    def test_trivial_size_has_no_kernels(self):
        self.assertEqual(len(Planner(1).plan()), 0)
        plan = Planner((1, 64)).plan()
        self.assertEqual(plan.axes, (Axis.Y,))

    def test_names_unique_and_parameterized(self):
        for dims in self.SIZES:
            plan = Planner(dims).plan()
            self.assertEqual(len(set(plan.kernel_names)), len(plan))
            for i, kernel in enumerate(plan):
                self.assertTrue(kernel.name.startswith(f"fft{i}_{plan.size}_{kernel.axis.name}_radix_"))
                self.assertTrue(kernel.name.endswith(f"_S{BATCH}_{DIRECTION_NAME}"))

    def test_name_format(self):
        plan = Planner((1024, 512)).plan()
        self.assertEqual(plan.kernel_names, (
            f"fft0_1024x512x1_X_radix_16_16_4_S{BATCH}_{DIRECTION_NAME}",
            f"fft1_1024x512x1_Y_radix_128_4_S{BATCH}_{DIRECTION_NAME}",
            f"fft2_1024x512x1_Y_radix_128_4_S{BATCH}_{DIRECTION_NAME}",
        ))

    def test_sources_carry_placeholders(self):
        for dims in self.SIZES:
            for kernel in Planner(dims).plan():
                self.assertIn(f"const int dir = {DIRECTION};", kernel.source)
                self.assertIn(f"const int S = {BATCH};", kernel.source)
                self.assertIn(SCALE, kernel.source)
                self.assertTrue(kernel.source.startswith("{\n"))
                self.assertTrue(kernel.source.endswith("}\n"))
                self.assertEqual(kernel.source.count("{"), kernel.source.count("}"))

    def test_work_dimensions_cover_every_point(self):
        for dims in self.SIZES:
            plan = Planner(dims).plan()
            for kernel, launch in zip(plan, plan.work_dimensions):
                self.assertEqual(launch.local_work_items, kernel.num_work_items_per_work_group)
                self.assertEqual(launch.global_work_items % launch.local_work_items, 0)
                covered = launch.global_work_items * kernel.registers_per_work_item
                self.assertGreaterEqual(covered, plan.size.points, kernel.name)

    def test_local_work_group_budget(self):
        for dims in self.SIZES:
            plan = Planner(dims).plan()
            for kernel in plan:
                if kernel.regime == 'local':
                    self.assertEqual(
                        kernel.work_items_per_transform * kernel.num_crossings_per_work_group,
                        kernel.num_work_items_per_work_group)
                    self.assertEqual(kernel.work_items_per_transform * kernel.registers_per_work_item,
                                     plan.size.x)

    def test_batch_sizes(self):
        size = TransformSize(64, 32, 16)
        self.assertEqual(batch_size(size, Axis.X), 32 * 16)
        self.assertEqual(batch_size(size, Axis.Y), 16)
        self.assertEqual(batch_size(size, Axis.Z), 1)
        launch = Planner(size).plan()[0].work_dimensions()
        self.assertEqual(launch.batch_size, 512)
        # 8 transforms per work group
        self.assertEqual(launch.global_work_items, 64 * 64)

    def test_work_dimensions_for_other_batch(self):
        kernel = Planner(16).plan()[0]
        launch = kernel.work_dimensions(batch_size=33)
        self.assertEqual(launch.batch_size, 33)
        self.assertEqual(launch.global_work_items, 2 * 64)

    def test_in_place_flags(self):
        # odd number of passes: only the last one
        plan = Planner(65536).plan()
        self.assertEqual([k.in_place_possible for k in plan], [False, False, True])
        # even number of passes: none
        plan = Planner(4096).plan()
        self.assertEqual([k.in_place_possible for k in plan], [False, False])
        # single pass
        self.assertTrue(Planner((64, 32)).plan()[1].in_place_possible)

    def test_local_memory_within_profile(self):
        profile = DeviceProfile()
        for dims in self.SIZES:
            for kernel in Planner(dims).plan():
                self.assertLessEqual(kernel.min_local_memory_elements,
                                     profile.max_local_memory_elements)
                if kernel.min_local_memory_elements:
                    self.assertIn(f"__local float smem[{kernel.min_local_memory_elements}];",
                                  kernel.source)

    def test_capacities(self):
        for capacity in (16, 32, 64, 128, 256, 512, 1024):
            profile = DeviceProfile(max_work_items_per_work_group=capacity)
            for n in (64, 256, 1024, 2048, 8192):
                plan = Planner(n, profile=profile).plan()
                for kernel in plan:
                    self.assertLessEqual(kernel.num_work_items_per_work_group, capacity)

    def test_interleaved_sources(self):
        plan = Planner(1024, DataFormat.INTERLEAVED).plan()
        self.assertEqual(plan.data_format, DataFormat.INTERLEAVED)
        self.assertNotIn("in_re", plan[0].source)
        self.assertIn("in += offset;", plan[0].source)
        self.assertNotEqual(plan.sources, Planner(1024).plan().sources)

    def test_describe(self):
        text = Planner((1024, 512)).plan().describe()
        self.assertIn("1024x512x1", text)
        self.assertIn("3 kernels", text)


class TestPadding(unittest.TestCase):

    def test_next_power_of_two(self):
        self.assertEqual(next_power_of_two(1), 1)
        self.assertEqual(next_power_of_two(100), 128)
        self.assertEqual(next_power_of_two(128), 128)
        with self.assertRaises(ValueError):
            next_power_of_two(0)

    def test_padded_transform_size(self):
        self.assertEqual(padded_transform_size((100, 30)), (128, 32))

    def test_is_supported(self):
        self.assertTrue(is_supported((1024, 512)))
        self.assertFalse(is_supported(100))
        self.assertFalse(is_supported((2, 2, 2, 2)))


if __name__ == '__main__':
    unittest.main()
