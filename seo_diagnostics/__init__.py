"""
Site diagnostics Python package.

This package hosts the diagnostic worker orchestrator, the first-party signal
connectors, and the drop classification engine.
"""

from .__version__ import __analysis_model_version__, __version__

__all__ = ["__version__", "__analysis_model_version__"]
