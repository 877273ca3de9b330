from typing import Any, Dict, List, Optional
import logging

from mapping_models import RuleKind, ValidationRule

logger = logging.getLogger(__name__)


def _strip_prefix(name: Optional[str], prefix: str) -> str:
    name = name or ""
    return name[len(prefix):] if name.startswith(prefix) else name


def _as_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


class ValidationRuleEvaluator:
    """
    Evaluates the declarative structural rules of a mapping configuration
    against a generic document tree. Every rule is checked; all failures are
    returned together.
    """

    def validate(self, document: Dict[str, Any], rules: List[ValidationRule]) -> List[str]:
        errors: List[str] = []
        for rule in rules or []:
            kind = RuleKind.resolve(rule.rule)
            if kind == RuleKind.HEADER_REQUIRED:
                errors.extend(self._header_required(document, rule))
            elif kind == RuleKind.TRAILER_REQUIRED:
                errors.extend(self._trailer_required(document, rule))
            elif kind == RuleKind.RECORD_COUNT_MATCH:
                errors.extend(self._record_count_match(document, rule))
            elif kind == RuleKind.REQUIRED_SEGMENT:
                errors.extend(self._required_segment(document, rule))
            else:
                logger.warning(f"Unknown validation rule '{rule.rule}' skipped.")

        if errors:
            logger.info(f"Validation completed with {len(errors)} error(s): {errors}")
        else:
            logger.debug(f"Validation completed: {len(rules or [])} rule(s) passed.")
        return errors

    def _header_required(self, document: Dict[str, Any], rule: ValidationRule) -> List[str]:
        header = document.get("header")
        field_name = _strip_prefix(rule.field, "header.")
        if not isinstance(header, dict) or field_name not in header:
            return [rule.message or f"Header field '{field_name}' is required."]
        return []

    def _trailer_required(self, document: Dict[str, Any], rule: ValidationRule) -> List[str]:
        if document.get("trailer") is None:
            return [rule.message or "Trailer record is required."]
        return []

    def _record_count_match(self, document: Dict[str, Any], rule: ValidationRule) -> List[str]:
        metadata = document.get("_metadata")
        trailer = document.get("trailer")
        if not isinstance(metadata, dict) or not isinstance(trailer, dict):
            return []

        actual = metadata.get("recordCount")
        expected = _as_int(trailer.get(_strip_prefix(rule.expectedField, "trailer.")))
        if actual != expected:
            message = rule.message or "Record count mismatch"
            return [f"{message}: actual={actual}, expected={expected}"]
        return []

    def _required_segment(self, document: Dict[str, Any], rule: ValidationRule) -> List[str]:
        errors = []
        for transaction in document.get("transactions") or []:
            for segment in rule.segments:
                if segment not in transaction:
                    errors.append(f"Missing required segment: {segment}")
        return errors
