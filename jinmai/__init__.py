# -*- coding: utf-8 -*-
"""
Jinmai AI gateway: vendor proxies, AI task queue and collaboration relay.

Public API (stable):
  - Settings
  - register_default_executors
"""

from __future__ import annotations

from ._version import VERSION as __version__
from .executors import register_default_executors
from .settings import Settings

__all__ = [
    "Settings",
    "register_default_executors",
    "__version__",
]
