import logging
import re
from datetime import datetime
from typing import List, Optional, Dict, Any

from mapping_models import FixedWidthSchema, FieldDefinition

logger = logging.getLogger(__name__)

_LINE_BREAK = re.compile(r'\r?\n')


def extract_field(line: str, start: int, end: int) -> str:
    """Slices [start, end) out of a line, clamping end to the line length."""
    start = max(start, 0)
    if start >= len(line):
        return ""
    return line[start:min(end, len(line))]


class FixedWidthParser:
    """Slices positional text into header, data records and trailer according to a schema."""

    def _parse_line(self, line: str, fields: List[FieldDefinition]) -> Dict[str, str]:
        node: Dict[str, str] = {}
        for field in fields:
            value = extract_field(line, field.start, field.end)
            node[field.name] = value.strip() if field.trim else value
        return node

    def parse(self, content: str, schema: FixedWidthSchema) -> Dict[str, Any]:
        header: Optional[Dict[str, str]] = None
        trailer: Optional[Dict[str, str]] = None
        records: List[Dict[str, str]] = []

        for line in _LINE_BREAK.split(content or ""):
            if not line.strip():
                continue
            if line.startswith(schema.headerPrefix):
                header = self._parse_line(line, schema.headerFields)
            elif line.startswith(schema.trailerPrefix):
                trailer = self._parse_line(line, schema.trailerFields)
            else:
                records.append(self._parse_line(line, schema.dataFields))

        logger.info(f"Parsed fixed-width file with schema '{schema.name}': {len(records)} record(s), "
                    f"header={'yes' if header is not None else 'no'}, trailer={'yes' if trailer is not None else 'no'}")

        return {
            "header": header,
            "records": records,
            "trailer": trailer,
            "_metadata": {
                "recordCount": len(records),
                "parseTimestamp": datetime.now().isoformat(),
            },
        }
