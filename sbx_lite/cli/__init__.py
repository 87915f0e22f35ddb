"""
CLI module for sbx-lite.

This module provides the command-line interface using Click and Rich.
"""

from sbx_lite.cli.main import main

__all__ = ["main"]
