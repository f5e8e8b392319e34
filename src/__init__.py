"""
Vintage Vision Identification Pipeline.

Identifies, authenticates and values antique, vintage and modern items
from a single photograph using a staged Claude vision pipeline
orchestrated with LangGraph.
"""

__version__ = "1.0.0"
__author__ = "Vintage Vision Team"

# Lazy imports to avoid circular dependencies
def get_pipeline():
    """Get the IdentificationPipeline class (lazy import)."""
    from src.pipeline.orchestrator import IdentificationPipeline
    return IdentificationPipeline

__all__ = ["get_pipeline", "__version__"]
