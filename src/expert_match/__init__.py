"""Expert matching package."""

from .config import PipelineConfig, RetrievalConfig

__all__ = ["PipelineConfig", "RetrievalConfig"]
