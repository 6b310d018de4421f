"""
Long-running drivers for the pipeline stages.
"""

from manager.scheduler import ExtractionScheduler

__all__ = ["ExtractionScheduler"]
