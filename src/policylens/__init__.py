"""PolicyLens: privacy policy and terms-of-service risk analysis service."""

from __future__ import annotations

import warnings
from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("policylens")
except PackageNotFoundError:
    # Source-tree execution without installed package metadata.
    warnings.warn(
        "Package metadata for 'policylens' not found; using fallback version '0.0.0+unknown'.",
        RuntimeWarning,
        stacklevel=2,
    )
    __version__ = "0.0.0+unknown"
