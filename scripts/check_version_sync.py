#!/usr/bin/env python3
"""
Fail when pyproject.toml's version and the package __version__ disagree.
Usage: python scripts/check_version_sync.py [pkg_import]   (default: deadlock_retry)
"""
from __future__ import annotations
import sys
import pathlib
import importlib

try:
    import tomllib  # Python 3.11+
except ModuleNotFoundError:  # Python 3.9–3.10
    import tomli as tomllib  # type: ignore[no-redef]

pkg_import = sys.argv[1] if len(sys.argv) > 1 else "deadlock_retry"
root = pathlib.Path(__file__).resolve().parents[1]

ver_toml = tomllib.loads((root / "pyproject.toml").read_text())["project"]["version"]

sys.path.insert(0, str(root / "src"))
ver_pkg = getattr(importlib.import_module(pkg_import), "__version__", None)

if ver_toml != ver_pkg:
    raise SystemExit(f"Version mismatch: pyproject={ver_toml} != {pkg_import}={ver_pkg}")

print(f"Version OK: {ver_toml}")
