import logging
import numbers
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from expression_resolver import evaluate_condition
from mapping_models import FieldMapping, MappingConfig, TargetTableConfig
from processing_models import MappingResult, ProcessingContext
from transform_functions import TransformContext, TransformFunctions, parse_datetime
from validation_service import ValidationRuleEvaluator

logger = logging.getLogger(__name__)

DEFAULT_DATE_FORMAT = "yyyyMMdd"
DEFAULT_DATETIME_FORMAT = "yyyyMMddHHmm"


def convert_type(value: Any, type_name: Optional[str], date_format: Optional[str] = None) -> Any:
    """
    Coerces a transform result to the configured column type.

    Raises ValueError/ArithmeticError when the value does not fit; the engine
    catches those and keeps the original value.
    """
    if value is None or type_name is None:
        return value

    kind = type_name.upper()
    if kind == "STRING":
        if isinstance(value, (date, datetime)):
            return value.isoformat()
        return str(value)
    if kind == "INTEGER":
        if isinstance(value, numbers.Number):
            return int(value)
        return int(str(value).strip())
    if kind == "DECIMAL":
        if isinstance(value, Decimal):
            return value
        return Decimal(str(value).strip())
    if kind == "DATE":
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        return parse_datetime(str(value), date_format or DEFAULT_DATE_FORMAT).date()
    if kind in ("DATETIME", "TIMESTAMP"):
        if isinstance(value, datetime):
            return value
        return parse_datetime(str(value), date_format or DEFAULT_DATETIME_FORMAT)
    return value


class MappingEngine:
    """
    Config-driven mapping of a generic document tree into records per target table.

    X12 documents are mapped per transaction: HEADER targets map the transaction
    itself, DETAIL targets map every element found at `loopPath` and inherit the
    header record's `parentKeys`. Fixed-width documents map every data line for
    every target, filtered by the target condition.
    """

    def __init__(self, transform_functions: Optional[TransformFunctions] = None, lookup_service=None,
                 validator: Optional[ValidationRuleEvaluator] = None):
        self.transform_functions = transform_functions or TransformFunctions()
        self.lookup_service = lookup_service
        self.validator = validator or ValidationRuleEvaluator()

    def transform(self, document: Dict[str, Any], config: MappingConfig, partner_id: Optional[str],
                  context: ProcessingContext) -> MappingResult:
        effective_config = self._apply_partner_overrides(config, partner_id)

        validation_errors = self.validator.validate(document, effective_config.validations)
        if validation_errors:
            logger.info(f"Document rejected by {len(validation_errors)} validation error(s); no records mapped.")
            return MappingResult.failed(validation_errors)

        result = MappingResult()
        if effective_config.sourceFormat == "X12":
            self._process_x12_transactions(document, effective_config, context, result)
        elif effective_config.sourceFormat == "FIXED_WIDTH":
            self._process_fixed_width_records(document, effective_config, context, result)
        else:
            logger.warning(f"Unsupported source format '{effective_config.sourceFormat}'. Nothing mapped.")

        table_counts = {table: len(rows) for table, rows in result.recordsByTable.items()}
        logger.info(f"Mapped {effective_config.ediType}: {result.get_total_records()} record(s) {table_counts}")
        return result

    def _apply_partner_overrides(self, config: MappingConfig, partner_id: Optional[str]) -> MappingConfig:
        # Overrides are loaded with the configuration but not merged.
        if not partner_id or partner_id not in config.partnerOverrides:
            return config
        override = config.partnerOverrides[partner_id]
        logger.warning(
            f"Partner overrides found for '{partner_id}' ({len(override.fieldOverrides)} field override(s), "
            f"{len(override.schemaOverrides)} schema override(s)) but override merging is not implemented; "
            f"using the base configuration unchanged."
        )
        return config

    def _process_x12_transactions(self, document: Dict[str, Any], config: MappingConfig,
                                  context: ProcessingContext, result: MappingResult):
        transactions = document.get("transactions")
        if not isinstance(transactions, list):
            return
        for idx, transaction in enumerate(transactions):
            logger.debug(f"Mapping transaction {idx + 1}/{len(transactions)}")
            self._process_targets(transaction, document, config, context, result)

    def _process_fixed_width_records(self, document: Dict[str, Any], config: MappingConfig,
                                     context: ProcessingContext, result: MappingResult):
        records = document.get("records")
        if not isinstance(records, list):
            return
        for target in config.targets:
            target_records = []
            for idx, record in enumerate(records):
                if target.condition and not evaluate_condition(target.condition, record):
                    logger.debug(f"Target '{target.table}': record {idx} skipped by condition '{target.condition}'")
                    continue
                target_records.append(self._map_fields(record, None, target.fields, document, context, idx))
            result.add_records(target.table, target_records)

    def _process_targets(self, transaction: Dict[str, Any], document: Dict[str, Any], config: MappingConfig,
                         context: ProcessingContext, result: MappingResult):
        header_record: Optional[Dict[str, Any]] = None
        for target in config.targets:
            if target.type == "HEADER":
                header_record = self._map_fields(transaction, None, target.fields, document, context, -1)
                result.add_records(target.table, [header_record])
            elif target.type == "DETAIL":
                result.add_records(target.table,
                                   self._map_detail_records(transaction, target, document, context, header_record))

    def _map_detail_records(self, transaction: Dict[str, Any], target: TargetTableConfig, document: Dict[str, Any],
                            context: ProcessingContext, header_record: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
        loop_segments = transaction.get(target.loopPath) if target.loopPath else None
        if loop_segments is None:
            logger.debug(f"Target '{target.table}': loop '{target.loopPath}' not present in transaction")
            return []

        elements = loop_segments if isinstance(loop_segments, list) else [loop_segments]
        records = []
        for idx, element in enumerate(elements):
            record = self._map_fields(element, transaction, target.fields, document, context, idx)
            self._add_parent_keys(record, header_record, target.parentKeys)
            records.append(record)
        return records

    def _map_fields(self, record: Any, transaction: Any, fields: List[FieldMapping], document: Dict[str, Any],
                    context: ProcessingContext, loop_index: int) -> Dict[str, Any]:
        output: Dict[str, Any] = {}
        effective_transaction = transaction if transaction is not None else record

        for field in fields:
            if field.condition and not evaluate_condition(field.condition, record):
                continue
            value = self._process_field(record, effective_transaction, field, document, context, loop_index, output)
            output[field.name] = self._coerce(value, field)
        return output

    def _process_field(self, record: Any, transaction: Any, field: FieldMapping, document: Dict[str, Any],
                       context: ProcessingContext, loop_index: int, output: Dict[str, Any]) -> Any:
        function = self.transform_functions.resolve(field.transform)
        tx_context = TransformContext(record, transaction, field, document, context,
                                      self.lookup_service, loop_index, output)
        return function(tx_context)

    def _coerce(self, value: Any, field: FieldMapping) -> Any:
        try:
            return convert_type(value, field.type, field.format)
        except (ValueError, ArithmeticError, TypeError) as e:
            logger.warning(f"Type conversion failed for field '{field.name}': value={value!r}, "
                           f"type={field.type}, format={field.format}: {e}. Keeping original value.")
            return value

    def _add_parent_keys(self, record: Dict[str, Any], header_record: Optional[Dict[str, Any]], parent_keys: List[str]):
        if header_record is None or not parent_keys:
            return
        for key in parent_keys:
            if key in header_record:
                record[key] = header_record[key]
