import logging
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional, Tuple

from expression_resolver import extract_qualified_value, resolve_path, resolve_placeholders
from mapping_models import FieldMapping, TransformName
from processing_models import ProcessingContext

logger = logging.getLogger(__name__)

# --- Date pattern helpers ---
# Mapping configs carry yyyyMMdd style patterns; strptime needs %Y%m%d.
# Each token also fixes the shape of its text, since strptime accepts "2024011" for %Y%m%d.
_PATTERN_TOKENS = {
    'yyyy': ('%Y', r'\d{4}'), 'uuuu': ('%Y', r'\d{4}'), 'yy': ('%y', r'\d{2}'),
    'MMMM': ('%B', r'[A-Za-z]+'), 'MMM': ('%b', r'[A-Za-z]{3}'), 'MM': ('%m', r'\d{2}'),
    'dd': ('%d', r'\d{2}'), 'HH': ('%H', r'\d{2}'), 'hh': ('%I', r'\d{2}'),
    'mm': ('%M', r'\d{2}'), 'ss': ('%S', r'\d{2}'),
    'SSSSSS': ('%f', r'\d{6}'), 'SSS': ('%f', r'\d{3}'), 'a': ('%p', r'[AaPp][Mm]'),
}
_PATTERN_PART = re.compile(r"'([^']*)'|([A-Za-z])\2*|([^A-Za-z']+)")


@lru_cache(maxsize=128)
def _compile_pattern(pattern: str) -> Tuple[str, re.Pattern]:
    formats, shapes = [], []
    for match in _PATTERN_PART.finditer(pattern):
        quoted, letter, literal = match.groups()
        if letter:
            run = match.group(0)
            if run not in _PATTERN_TOKENS:
                raise ValueError(f"Unsupported date pattern token '{run}' in '{pattern}'")
            directive, shape = _PATTERN_TOKENS[run]
            formats.append(directive)
            shapes.append(shape)
        else:
            text = quoted if quoted is not None else literal
            formats.append(text.replace('%', '%%'))
            shapes.append(re.escape(text))
    return ''.join(formats), re.compile(''.join(shapes))


def to_strptime_format(pattern: str) -> str:
    return _compile_pattern(pattern)[0]


def parse_datetime(value: str, pattern: str) -> datetime:
    """
    Parses `value` with a yyyyMMddHHmm style pattern. Every numeric token must
    have its full width, so a truncated "2024011" is rejected rather than read
    as 2024-01-01. Raises ValueError when the value does not fit.
    """
    strptime_format, shape = _compile_pattern(pattern)
    if not shape.fullmatch(value):
        raise ValueError(f"'{value}' does not match date pattern '{pattern}'")
    return datetime.strptime(value, strptime_format)


class TransformContext:
    """Everything a transform function may read while producing one output value."""

    def __init__(self, record: Any, transaction: Any, field: FieldMapping, document: Dict[str, Any],
                 processing_context: Optional[ProcessingContext], lookup_service=None,
                 loop_index: int = -1, output_record: Optional[Dict[str, Any]] = None):
        self.record = record
        self.transaction = transaction
        self.field = field
        self.document = document
        self.processing_context = processing_context
        self.lookup_service = lookup_service
        self.loop_index = loop_index
        self.output_record = output_record if output_record is not None else {}

    @property
    def search_node(self) -> Any:
        """Node that holds segments: the transaction when there is one, else the record."""
        return self.transaction if self.transaction is not None else self.record

    def get_string_value(self, path: Optional[str]) -> Optional[str]:
        return resolve_path(path, self.record, self.transaction, self.document,
                            self.processing_context, self.output_record)

    def resolve_expression(self, expr: Optional[str]) -> Optional[str]:
        return resolve_placeholders(expr, self.get_string_value)


TransformFunction = Callable[[TransformContext], Any]


# --- Transform implementations ---
def direct(ctx: TransformContext) -> Any:
    return ctx.get_string_value(ctx.field.source)


def constant(ctx: TransformContext) -> Any:
    return ctx.field.value


def current_timestamp(ctx: TransformContext) -> Any:
    return datetime.now()


def concat(ctx: TransformContext) -> Any:
    parts = [ctx.get_string_value(ctx.field.source) or ""]
    if ctx.field.concatWith is not None:
        parts.append(ctx.get_string_value(ctx.field.concatWith) or "")
    for path in ctx.field.concatFields or []:
        parts.append(ctx.get_string_value(path) or "")
    return "".join(parts).strip()


def build_datetime(ctx: TransformContext) -> Any:
    source_fields = ctx.field.sourceFields
    if not source_fields:
        return None

    date_str = ""
    for part in ("century", "year", "month", "day", "hour"):
        path = source_fields.get(part)
        if path is not None:
            date_str += ctx.get_string_value(path) or ""
    minute_path = source_fields.get("minute")
    if minute_path is not None:
        date_str += ctx.get_string_value(minute_path) or "00"

    pattern = ctx.field.format or "yyyyMMddHHmm"
    try:
        return parse_datetime(date_str, pattern)
    except ValueError:
        logger.warning(f"Field '{ctx.field.name}': cannot build datetime from '{date_str}' with pattern '{pattern}'")
        return None


def divide_100(ctx: TransformContext) -> Any:
    value = ctx.get_string_value(ctx.field.source)
    if not value:
        return None
    try:
        return Decimal(value) / Decimal(100)
    except InvalidOperation:
        logger.warning(f"Field '{ctx.field.name}': '{value}' is not numeric, cannot apply implied decimal")
        return None


def trim_or_null(ctx: TransformContext) -> Any:
    value = ctx.get_string_value(ctx.field.source)
    if value is None:
        return None
    value = value.strip()
    return value or None


def uppercase(ctx: TransformContext) -> Any:
    value = ctx.get_string_value(ctx.field.source)
    return value.upper() if value is not None else None


def quote_condition_value(value: Optional[str]) -> Optional[str]:
    """Doubles single quotes so a document value stays inside its '...' literal."""
    return value.replace("'", "''") if value is not None else None


def resolve_condition(ctx: TransformContext, expr: Optional[str]) -> Optional[str]:
    return resolve_placeholders(expr, lambda path: quote_condition_value(ctx.get_string_value(path)))


def lookup(ctx: TransformContext) -> Any:
    """
    Condition mode (lookupCondition set): fills ${...} placeholders with quoted
    values and runs a WHERE-condition lookup, retrying with
    lookupFallbackCondition on a miss.
    Key mode: resolves lookupKeyExpr and matches it against lookupKeyColumn.
    """
    service = ctx.lookup_service
    if service is None:
        logger.warning(f"Field '{ctx.field.name}': LOOKUP configured but no lookup service is available")
        return None
    field = ctx.field

    if field.lookupCondition:
        condition = resolve_condition(ctx, field.lookupCondition)
        result = service.lookup_with_condition(field.lookupTable, condition, field.lookupColumn)
        if result is None and field.lookupFallbackCondition:
            fallback = resolve_condition(ctx, field.lookupFallbackCondition)
            logger.debug(f"Field '{field.name}': primary lookup missed, trying fallback '{fallback}'")
            result = service.lookup_with_condition(field.lookupTable, fallback, field.lookupColumn)
        return result

    key = ctx.resolve_expression(field.lookupKeyExpr)
    return service.lookup(field.lookupTable, field.lookupKeyColumn, key, field.lookupColumn)


def qualified_segment(ctx: TransformContext) -> Any:
    return extract_qualified_value(ctx.field.source, ctx.search_node, ctx.loop_index)


def coalesce(ctx: TransformContext) -> Any:
    for candidate in ctx.field.sources or []:
        value = None
        if candidate.concatFields:
            joined = "".join(v for v in (ctx.get_string_value(p) for p in candidate.concatFields) if v is not None)
            value = joined or None
        elif candidate.source is not None:
            if TransformName.resolve(candidate.transform) == TransformName.QUALIFIED_SEGMENT:
                value = extract_qualified_value(candidate.source, ctx.search_node, ctx.loop_index)
            else:
                value = ctx.get_string_value(candidate.source)

        if value is not None and str(value) != "":
            return value
    return None


def conditional(ctx: TransformContext) -> Any:
    return ctx.field.trueValue if ctx.get_string_value(ctx.field.source) else ctx.field.falseValue


# --- Derived flags ---
# Small decision tables kept as separate functions so each can be tested alone.
def bookno_flag_from(bm_value: Optional[str], bn_value: Optional[str]) -> Optional[str]:
    """'' when a BM booking number is present, 'X' when only BN is present, None otherwise."""
    if bm_value:
        return ""
    if bn_value:
        return "X"
    return None


def id_map_flag_from(value: Optional[str]) -> str:
    """'T' for empty or 'Y', 'D' for '1', otherwise the value itself."""
    if not value or value == "Y":
        return "T"
    if value == "1":
        return "D"
    return value


def bookno_flag(ctx: TransformContext) -> Any:
    node = ctx.search_node
    return bookno_flag_from(
        extract_qualified_value("N9[01=BM].02", node, ctx.loop_index),
        extract_qualified_value("N9[01=BN].02", node, ctx.loop_index),
    )


def id_map_flag(ctx: TransformContext) -> Any:
    return id_map_flag_from(ctx.get_string_value(ctx.field.source))


_BUILTINS: Dict[TransformName, TransformFunction] = {
    TransformName.DIRECT: direct,
    TransformName.CONSTANT: constant,
    TransformName.CURRENT_TIMESTAMP: current_timestamp,
    TransformName.CONCAT: concat,
    TransformName.BUILD_DATETIME: build_datetime,
    TransformName.DIVIDE_100: divide_100,
    TransformName.TRIM_OR_NULL: trim_or_null,
    TransformName.UPPERCASE: uppercase,
    TransformName.LOOKUP: lookup,
    TransformName.QUALIFIED_SEGMENT: qualified_segment,
    TransformName.COALESCE: coalesce,
    TransformName.CONDITIONAL: conditional,
    TransformName.BOOKNO_FLAG: bookno_flag,
    TransformName.ID_MAP_FLAG: id_map_flag,
}


class TransformFunctions:
    """Registry of named transform functions used by the mapping engine."""

    def __init__(self):
        self._functions: Dict[str, TransformFunction] = {name.value: fn for name, fn in _BUILTINS.items()}

    def get(self, name: str) -> Optional[TransformFunction]:
        return self._functions.get(name)

    def register(self, name: str, function: TransformFunction):
        """Adds or replaces a function, e.g. a partner-specific derived flag."""
        if name in self._functions:
            logger.info(f"Replacing transform function '{name}'")
        self._functions[name] = function

    def names(self) -> List[str]:
        return list(self._functions.keys())

    def resolve(self, name: Optional[str]) -> TransformFunction:
        """Returns the function for `name`; absent means DIRECT, unknown falls back to DIRECT."""
        key = name or TransformName.DIRECT.value
        function = self._functions.get(key)
        if function is None:
            logger.warning(f"Unknown transform: {name}, using DIRECT")
            function = self._functions[TransformName.DIRECT.value]
        return function
