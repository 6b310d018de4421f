"""
Record to JSON transcoding.

Records are written in an externally tagged shape, one JSON document per
line unless pretty printing is requested:

    "StreamStart"
    {"Header": {"required": {"version": 1}, "time": 1590000000000000000,
                "id": "10-probe", "pid": 4242, "cxt": "Start"}}
    {"Data": {"required": {"version": 1}, "time": ..., "id": "10-probe",
              "pid": 4242, "cxt": "Stdout", "data": "hello"}}
"""

import json
import sys
from typing import Any, Optional, TextIO

from core.logging import get_logger
from transport.records import Data, Error, Header, Log, Record, StreamEnd, StreamStart


logger = get_logger(__name__)


def record_to_json(record: Record) -> Any:
    """Build the JSON-compatible representation of a record."""
    if isinstance(record, StreamStart):
        return "StreamStart"
    if isinstance(record, StreamEnd):
        return "StreamEnd"
    if isinstance(record, Header):
        return {"Header": {
            "required": {"version": record.version},
            "time": record.time,
            "id": record.id,
            "pid": record.pid,
            "cxt": record.context.label,
        }}
    if isinstance(record, Data):
        return {"Data": {
            "required": {"version": record.version},
            "time": record.time,
            "id": record.id,
            "pid": record.pid,
            "cxt": record.context.label,
            "data": record.text,
        }}
    if isinstance(record, Log):
        return {"Log": {
            "required": {"version": record.version},
            "log": record.log,
        }}
    if isinstance(record, Error):
        return {"Error": {
            "required": {"version": record.version},
            "error": {
                "time": record.error.time,
                "kind": record.error.kind,
                "msg": record.error.msg,
            },
        }}
    raise TypeError(f"Not a record: {type(record).__name__}")


def dumps_record(record: Record, pretty: bool = False) -> str:
    if pretty:
        return json.dumps(record_to_json(record), indent=2, ensure_ascii=False)
    return json.dumps(record_to_json(record), separators=(",", ":"), ensure_ascii=False)


class JsonPrinter:
    """
    Writes records as JSON to a text stream.

    Usage:
        printer = JsonPrinter(pretty=True)
        printer.write(record)
    """

    def __init__(self, stream: Optional[TextIO] = None, pretty: bool = False):
        self.stream = stream or sys.stdout
        self.pretty = pretty
        self.written = 0

    def write(self, record: Record) -> bool:
        """Print a record; returns False if it could not be serialized."""
        try:
            text = dumps_record(record, self.pretty)
        except (TypeError, ValueError) as e:
            logger.error("Failed to serialize record... skipping", kind=type(record).__name__, error=str(e))
            return False
        self.stream.write(text + "\n")
        self.stream.flush()
        self.written += 1
        return True
