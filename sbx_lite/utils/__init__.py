"""
Utilities module for sbx-lite.

This module contains utility functions and helper classes
used throughout the application.
"""

from sbx_lite.utils.helpers import (
    calculate_file_checksum,
    format_bytes,
    load_config_file,
    merge_dicts,
    create_private_temp_dir,
    is_within,
    atomic_copy_file,
    atomic_write_bytes,
    remove_path,
)
from sbx_lite.utils.logging import (
    setup_logging,
    get_logger,
    LogCategory,
    StructuredFormatter,
)

__all__ = [
    # Helper functions
    "calculate_file_checksum",
    "format_bytes",
    "load_config_file",
    "merge_dicts",
    "create_private_temp_dir",
    "is_within",
    "atomic_copy_file",
    "atomic_write_bytes",
    "remove_path",
    # Logging utilities
    "setup_logging",
    "get_logger",
    "LogCategory",
    "StructuredFormatter",
]
