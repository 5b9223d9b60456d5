"""
devpool-orchestrator — package root

File: src/devpool_orchestrator/__init__.py
Last updated: 2026-10-19

Purpose
- Coordinate a pool of autonomous worker sessions that move tickets through a
  label-encoded workflow state machine under per-role/per-level capacity limits.

Import boundary rules
- No side effects at import time (no config loading, no logging init).
- Heavy planes (control_plane, persistence) are imported by callers explicitly.
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
