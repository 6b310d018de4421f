"""
Extract stage: discover executables and capture their output as records.
"""

from extractor.discovery import DiscoveryError, Executable, batches, discover
from extractor.priority import Priority
from extractor.runner import ExtractionRunner, RunSummary, extract_directory

__all__ = [
    "DiscoveryError",
    "Executable",
    "ExtractionRunner",
    "Priority",
    "RunSummary",
    "batches",
    "discover",
    "extract_directory",
]
