# SPDX-License-Identifier: LGPL-3.0-only
# Copyright (c) 2026 Mirrowel

# src/platform_auth/utils/__init__.py

from .resilient_io import safe_mkdir, safe_read_json, safe_write_json

__all__ = [
    "safe_mkdir",
    "safe_read_json",
    "safe_write_json",
]
