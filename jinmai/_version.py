# -*- coding: utf-8 -*-

from __future__ import annotations

import re
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

DIST_NAME = "jinmai"


def _from_source_tree() -> str:
    # Running from a checkout without `pip install -e .`.
    pyproject = Path(__file__).resolve().parent.parent / "pyproject.toml"
    try:
        text = pyproject.read_text(encoding="utf-8")
    except OSError:
        return "0.0.0"
    m = re.search(r'^version\s*=\s*"([^"]+)"', text, flags=re.MULTILINE)
    return m.group(1).strip() if m else "0.0.0"


def _resolve() -> str:
    try:
        return str(version(DIST_NAME) or "").strip() or _from_source_tree()
    except PackageNotFoundError:
        return _from_source_tree()


VERSION = _resolve()
__version__ = VERSION

__all__ = ["VERSION", "__version__"]
