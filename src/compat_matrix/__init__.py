"""
compat-matrix — release compatibility gate

File: src/compat_matrix/__init__.py

Purpose
- Package root. Declares named verification environments for a published
  library, runs each under its deployment mode, and folds the outcomes into a
  single release gate.

Import boundary
- No side effects at import time (no config loading, no logging init).
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
