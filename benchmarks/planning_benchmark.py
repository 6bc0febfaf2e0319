#!/usr/bin/env python
"""
Planning benchmark for clfftplan

Times cold planning (kernel synthesis) and warm cache lookups across 1D, 2D
and 3D sizes, and reports the size of the generated programs.
"""

import argparse
import os
import sys
import time

from tabulate import tabulate

# Add the src directory to the Python path if needed
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

import clfftplan
from clfftplan import Direction

# Number of times to repeat each measurement
REPEATS = 5

SIZES_1D = [(16,), (256,), (1024,), (2048,), (4096,), (65536,), (1 << 20,)]
SIZES_2D = [(256, 256), (1024, 512), (2048, 2048), (4096, 64)]
SIZES_3D = [(64, 64, 64), (128, 128, 128), (256, 16, 8)]

# Avoid the largest sizes on quick runs
if os.environ.get('PLANNING_BENCHMARK', '').lower() == 'small':
    SIZES_1D = SIZES_1D[:5]
    SIZES_2D = SIZES_2D[:2]
    SIZES_3D = SIZES_3D[:1]


def time_cold(size, profile):
    """Best of REPEATS cold plans, in milliseconds."""
    best = float('inf')
    for _ in range(REPEATS):
        clfftplan.clear_cache()
        start = time.perf_counter()
        clfftplan.plan_fft(size, profile=profile)
        best = min(best, time.perf_counter() - start)
    return best * 1000


def time_warm(size, profile, lookups=1000):
    """Mean cached lookup time, in microseconds."""
    clfftplan.plan_fft(size, profile=profile)
    start = time.perf_counter()
    for _ in range(lookups):
        clfftplan.plan_fft(size, profile=profile)
    return (time.perf_counter() - start) / lookups * 1e6


def run(sizes, profile):
    rows = []
    for size in sizes:
        cold = time_cold(size, profile)
        warm = time_warm(size, profile)
        plan = clfftplan.plan_fft(size, profile=profile)
        source = clfftplan.program_source(plan, Direction.FORWARD)
        rows.append({
            'size': str(plan.size),
            'kernels': len(plan),
            'regimes': "/".join(k.regime for k in plan),
            'cold (ms)': f"{cold:.2f}",
            'cached (us)': f"{warm:.2f}",
            'source lines': source.count("\n"),
        })
    return rows


def main():
    parser = argparse.ArgumentParser(description="clfftplan planning benchmark")
    parser.add_argument('--capacity', type=int, default=256,
                        help="maximum work items per work group")
    parser.add_argument('--banks', type=int, default=16, help="local memory banks")
    args = parser.parse_args()

    profile = clfftplan.DeviceProfile(max_work_items_per_work_group=args.capacity,
                                      local_mem_banks=args.banks)
    print(f"Device profile: {profile}\n")

    for title, sizes in (("1D", SIZES_1D), ("2D", SIZES_2D), ("3D", SIZES_3D)):
        print(f"{title} transforms")
        print(tabulate(run(sizes, profile), headers='keys', tablefmt='grid'))
        print()

    stats = clfftplan.get_stats()
    print(f"Cache: {stats['total_plans']} plans, {stats['total_kernels']} kernels")


if __name__ == "__main__":
    main()
