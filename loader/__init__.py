"""
Load stage: print received records as JSON.
"""

from loader.printer import JsonPrinter, dumps_record, record_to_json
from loader.service import LoadServer

__all__ = ["JsonPrinter", "LoadServer", "dumps_record", "record_to_json"]
