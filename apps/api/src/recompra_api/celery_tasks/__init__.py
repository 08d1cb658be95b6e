"""Celery task modules for Recompra."""

# Import submodules so Celery autodiscovery registers tasks.
from . import sweeps as _sweeps  # noqa: F401

__all__ = ["_sweeps"]
