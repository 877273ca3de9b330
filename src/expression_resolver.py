"""
Path and placeholder resolution over the generic document tree.

Path precedence used by `resolve_path`:

    'literal'            -> literal text, quotes stripped
    context.<key>        -> ProcessingContext value
    header.<field>       -> fixed-width header field
    envelope.<a>.<b>     -> X12 envelope traversal (envelope.ISA.06)
    <SEG>.<ELEMENT>      -> element of a transaction-level segment (B4.07)
    <field>              -> current record, then values already produced for the output record
"""
import logging
import re
from typing import Any, Callable, Dict, Optional

from processing_models import ProcessingContext

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r'\$\{([^}]+)\}')
_CONDITION_PLACEHOLDER = re.compile(r'\$\{(\w+)\}')
_QUALIFIED_PATH = re.compile(r'(\w+)\[([^\]]+)\]\.(\d+)')


def read_leaf(node: Any, key: str) -> Optional[str]:
    """Reads a scalar child. Missing, null and empty values are all absent; others are trimmed."""
    if not isinstance(node, dict) or key not in node:
        return None
    value = node[key]
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value)
    return text.strip() if text else None


def _stringify(value: Any) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return str(value)


def resolve_path(
    path: Optional[str],
    record: Any,
    transaction: Any,
    document: Dict[str, Any],
    processing_context: Optional[ProcessingContext],
    output_record: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    if path is None:
        return None

    if len(path) >= 2 and path.startswith("'") and path.endswith("'"):
        return path[1:-1]

    if path.startswith("context."):
        if processing_context is None:
            return None
        return _stringify(processing_context.get_value(path[len("context."):]))

    if path.startswith("header.") and isinstance(document.get("header"), dict):
        return read_leaf(document["header"], path[len("header."):])

    if path.startswith("envelope.") and "envelope" in document:
        node: Any = document["envelope"]
        for part in path[len("envelope."):].split("."):
            if not isinstance(node, dict):
                return None
            node = node.get(part)
        if node is None or isinstance(node, (dict, list)):
            return None
        return str(node).strip()

    if "." in path and isinstance(transaction, dict):
        segment_id, element_id = path.split(".", 1)
        segment = transaction.get(segment_id)
        if segment is not None:
            return read_leaf(segment, element_id)

    if isinstance(record, dict) and path in record:
        return read_leaf(record, path)
    if output_record and path in output_record:
        value = _stringify(output_record[path])
        return value.strip() if value else None
    return None


def resolve_placeholders(expr: Optional[str], resolver: Callable[[str], Optional[str]]) -> Optional[str]:
    """Replaces every ${path} with its resolved value; unresolved paths become empty text."""
    if expr is None:
        return None
    return _PLACEHOLDER.sub(lambda m: resolver(m.group(1)) or "", expr)


def evaluate_condition(condition: Optional[str], record: Any) -> bool:
    """
    Textual truthiness test used by target and field conditions.

    `${field}` placeholders are filled from the current record (a null value
    becomes the text "null", a missing field becomes empty). The condition holds
    when the filled text contains neither "null" nor "''" and is not empty.
    This is not a boolean expression language: "${a} != ''" is false when a is
    empty because the filled text then contains "''".
    """
    if not condition:
        return True

    def fill(match: re.Match) -> str:
        name = match.group(1)
        if not isinstance(record, dict) or name not in record:
            return ""
        value = record[name]
        return "null" if value is None else str(value)

    resolved = _CONDITION_PLACEHOLDER.sub(fill, condition)
    result = "null" not in resolved and "''" not in resolved and resolved != ""
    logger.debug(f"Condition '{condition}' resolved to '{resolved}' -> {result}")
    return result


def _element_text(segment: Any, position: str) -> Optional[str]:
    if not isinstance(segment, dict):
        return None
    value = segment.get(position)
    return None if value is None else str(value)


def extract_qualified_value(source_path: Optional[str], node: Any, loop_index: int) -> Optional[str]:
    """
    Reads SEG[QUALPOS=VALUE].POS or SEG[_index].POS from `node`.

    `_index` picks the repetition of SEG at the current loop index, i.e. it
    assumes SEG repeats in lockstep with the loop being mapped.
    """
    if not source_path or not isinstance(node, dict):
        return None
    match = _QUALIFIED_PATH.fullmatch(source_path)
    if not match:
        logger.debug(f"Not a qualified segment path: '{source_path}'")
        return None

    segment_id, qualifier, position = match.groups()
    segments = node.get(segment_id)
    if segments is None:
        return None

    if qualifier == "_index":
        if isinstance(segments, list) and 0 <= loop_index < len(segments):
            return _element_text(segments[loop_index], position)
        return None

    parts = qualifier.split("=")
    if len(parts) != 2:
        return None
    qual_pos, qual_value = parts

    candidates = segments if isinstance(segments, list) else [segments]
    for segment in candidates:
        if _element_text(segment, qual_pos) == qual_value:
            return _element_text(segment, position)
    return None
