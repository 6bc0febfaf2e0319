from setuptools import setup, find_packages

setup(
    name="clfftplan",
    version="0.1.0",
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    install_requires=[
        "numpy>=1.17.0",
        "pyfftw>=0.12.0",
        "mako>=1.1.0",
    ],
    extras_require={
        "dev": ["pytest", "pytest-cov", "black", "flake8", "scipy>=1.3.0"],
        "opencl": ["pyopencl>=2020.1"],
        "bench": ["tabulate"],
    },
    python_requires=">=3.7",
    description="OpenCL FFT kernel planner: mixed-radix kernel synthesis for power-of-two transforms",
    long_description=open("README.md").read(),
    long_description_content_type="text/markdown",
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.7",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Topic :: Scientific/Engineering",
        "Topic :: Software Development :: Code Generators",
    ],
)
