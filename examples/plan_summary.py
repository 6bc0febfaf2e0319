"""
Plan a transform, check it on the host and print the OpenCL program
"""

# Add the src directory to the Python path
import sys
import os
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

import numpy as np

import clfftplan
from clfftplan import Direction
from clfftplan.reference import execute_plan, random_signal, reference_fft


def main():
    dims = tuple(int(d) for d in sys.argv[1:]) or (1024, 512)

    print(f"Planning {dims}...")
    plan = clfftplan.plan_fft(dims)
    print(plan.describe())

    print("\nLaunch shapes (global, local):")
    for kernel, shape in zip(plan, clfftplan.launch_shapes(plan)):
        print(f"  {clfftplan.kernel_name(kernel, Direction.FORWARD)}: {shape}")

    # Replay the passes with numpy and compare against FFTW
    print("\nChecking the decomposition on the host...")
    x = random_signal(plan.size.array_shape)
    error = np.max(np.abs(execute_plan(plan, x) - reference_fft(x)))
    print(f"Max abs error vs FFTW: {error:.3e}")

    source = clfftplan.program_source(plan, Direction.FORWARD)
    print(f"\nProgram source: {len(source.splitlines())} lines")
    if len(plan):
        print("\nFirst kernel:")
        print(clfftplan.kernel_source(plan[0], Direction.FORWARD, plan.data_format))

    print("\nDone!")


if __name__ == "__main__":
    main()
