"""
lumenflow-core — package root

File: src/lumenflow_core/__init__.py

Purpose
- Coordination core for parallel work units (WUs): event-sourced state,
  lane admission control, workspace enforcement, consistency repair.

Import boundary rules
- No side effects at import time (no config loading, no logging setup).
- Submodules are imported explicitly by callers.
"""

from __future__ import annotations

__version__ = "0.4.0"

__all__ = ["__version__"]
