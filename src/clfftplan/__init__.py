"""
clfftplan: OpenCL FFT kernel planner.

this package synthesizes the ordered OpenCL kernels that compute a 1D, 2D or
3D power-of-two complex FFT: mixed-radix Cooley-Tukey passes, padded
local-memory shuffles, coalesced global loads and stores, and batching.
plans are pure functions of (size, data format, device profile) and are
cached for the life of the process.

Basic usage:
    import clfftplan

    plan = clfftplan.plan_fft((1024, 512))
    for kernel in plan:
        print(kernel.name, kernel.work_dimensions())

    # OpenCL program text for the forward transform
    source = clfftplan.program_source(plan, clfftplan.Direction.FORWARD)

Advanced usage:
    # Plan for a device with smaller work groups
    plan = clfftplan.plan_fft(4096, capacity=128)

    # Or describe the device completely
    profile = clfftplan.DeviceProfile(max_work_items_per_work_group=1024, local_mem_banks=32)
    plan = clfftplan.plan_fft((256, 256, 64), profile=profile)
"""

import copy
import os
import logging


__version__ = '0.1.0'
# Import core functionality
from .core import (
    # Data model
    TransformSize, DataFormat, Axis, Direction,
    DeviceProfile, KernelDescriptor, WorkDimensions, Plan,

    # Planning and cache
    plan_fft, get_stats, clear_cache,
    get_default_profile, set_default_profile,
    PlanCache,
)

from .errors import (
    FFTPlanError, ConfigurationError, ResourceError, InternalInvariantError
)

# Import planning module for advanced users
from .planning import (
    Planner, choose_regime, padded_transform_size, next_power_of_two, is_supported
)

# Radix helpers
from .radix import (
    decompose_local, decompose_global, radix_to_r1, radix_to_r2
)

# Downstream hand-off
from .interface import (
    render, kernel_name, kernel_source, program_source, launch_shapes
)

from . import core

# Configuration system
_config = {
    # Default configuration
    'device': {
        'max_work_items_per_work_group': 256,
        'max_radix': 16,
        'mem_coalesce_width': 16,
        'local_mem_banks': 16,
        'max_local_memory_elements': 8192,
        'max_localmem_fft_size': 2048,
        'global_base_radix': 128,
        'min_work_items_per_work_group': 64,
    },
    'planning': {
        'default_data_format': 'split_planar',
    },
    'logging': {
        'level': 'WARNING',
    }
}


def _update_nested_dict(d, u):
    """Update nested dictionary recursively."""
    for k, v in u.items():
        if isinstance(v, dict) and k in d and isinstance(d[k], dict):
            _update_nested_dict(d[k], v)
        else:
            d[k] = v


def configure(config_dict=None, **kwargs):
    """
    Configure clfftplan global settings.

    Plans already in the cache stay valid; they are keyed by the device
    profile they were built for.

    Args:
        config_dict: Dictionary with configuration settings
        **kwargs: Configuration settings as keyword arguments

    Raises:
        ConfigurationError: The resulting device profile is invalid; the
            previous configuration is kept

    Examples:
        # Configure with a dictionary
        clfftplan.configure({
            'device': {'max_work_items_per_work_group': 1024},
            'logging': {'level': 'DEBUG'}
        })

        # Or with keyword arguments
        clfftplan.configure(
            device_local_mem_banks=32,
            planning_default_data_format='interleaved'
        )
    """
    global _config

    updated = copy.deepcopy(_config)
    if config_dict:
        # Update nested dictionary recursively
        _update_nested_dict(updated, config_dict)

    # Process kwargs (flattened config)
    for key, value in kwargs.items():
        # Handle nested keys like 'device_max_radix'
        parts = key.split('_', 1)
        if len(parts) == 2 and parts[0] in updated and parts[1] in updated[parts[0]]:
            updated[parts[0]][parts[1]] = value
        else:
            logging.getLogger("clfftplan").warning(f"Ignoring unknown configuration key {key!r}")

    # validate before anything is applied
    profile = DeviceProfile(**updated['device'])
    data_format = DataFormat(updated['planning']['default_data_format'])
    level = _logging_level(updated['logging']['level'])

    _config = updated
    _apply_configuration(profile, data_format, level)

    return copy.deepcopy(_config)  # Return a copy of the current config


def get_config():
    """Current configuration (a copy)."""
    return copy.deepcopy(_config)


def _logging_level(name):
    """Numeric level for a level name such as 'debug' or 'WARNING'."""
    level = getattr(logging, str(name).upper(), None)
    if isinstance(level, bool) or not isinstance(level, int):
        raise ConfigurationError(f"unknown logging level {name!r}")
    return level


def _apply_configuration(profile=None, data_format=None, level=None):
    """Apply configuration settings to module components."""
    if profile is None:
        profile = DeviceProfile(**_config['device'])
    if data_format is None:
        data_format = DataFormat(_config['planning']['default_data_format'])
    if level is None:
        level = _logging_level(_config['logging']['level'])

    # Apply to core module
    core.set_default_profile(profile)
    core.DEFAULT_DATA_FORMAT = data_format

    # Configure logging
    logging.getLogger("clfftplan").setLevel(level)


def _load_env_config():
    """Load configuration from environment variables."""
    # Environment variable prefix
    prefix = "CLFFTPLAN_"

    settings = {}
    # Find all relevant environment variables
    for key, value in os.environ.items():
        if key.startswith(prefix):
            # Remove prefix and convert to lowercase
            config_key = key[len(prefix):].lower()

            # Try to convert value to appropriate type
            if value.isdigit():
                value = int(value)
            elif value.lower() in ('true', 'yes', 'on'):
                value = True
            elif value.lower() in ('false', 'no', 'off'):
                value = False
            elif value.replace('.', '', 1).isdigit():
                value = float(value)

            settings[config_key] = value

    if settings:
        # Apply settings using configure; a bad value keeps the current settings
        try:
            configure(**settings)
        except (FFTPlanError, ValueError) as e:
            logging.getLogger("clfftplan").warning(
                f"Ignoring {prefix}* environment settings: {e}")


# Initialize logging
def _setup_logging():
    """Set up default logging configuration."""
    logger = logging.getLogger("clfftplan")
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(getattr(logging, _config['logging']['level']))
        # Don't propagate to root logger
        logger.propagate = False


_setup_logging()

# Load environment config at startup
_load_env_config()
