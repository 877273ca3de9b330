import logging
from typing import List, Optional, Tuple, Dict, Any

logger = logging.getLogger(__name__)

ENVELOPE_SEGMENTS = ('ISA', 'GS', 'GE', 'IEA')
DEFAULT_SEGMENT_TERMINATOR = '~'

# Offsets inside the fixed-length ISA preamble
ELEMENT_SEPARATOR_OFFSET = 3
SEGMENT_TERMINATOR_OFFSET = 105


class FormatError(ValueError):
    """Raised when raw text cannot be turned into a document tree."""


def _segment_node(elements: List[str]) -> Dict[str, str]:
    """Keys element values by their two-digit position ("01", "02", ...)."""
    return {f"{idx:02d}": value.strip() for idx, value in enumerate(elements[1:], start=1)}


def _add_segment(transaction: Dict[str, Any], segment_id: str, node: Dict[str, str]):
    existing = transaction.get(segment_id)
    if existing is None:
        transaction[segment_id] = node
    elif isinstance(existing, list):
        existing.append(node)
    else:
        # Second occurrence of a repeating segment (N9, R4, ...)
        transaction[segment_id] = [existing, node]


class X12Parser:
    """
    Normalizes an ANSI X12 interchange into the generic document tree:

        {"envelope": {"ISA": {...}, "GS": {...}, "GE": {...}, "IEA": {...}},
         "transactions": [{"ST": {...}, "B4": {...}, "N9": [{...}, {...}], "SE": {...}}],
         "_metadata": {"transactionCount": 1, "elementSeparator": "*", "segmentTerminator": "~"}}

    No segment dictionary is involved; element positions are self-describing.
    """

    def _detect_delimiters(self, edi_string: str) -> Tuple[str, str]:
        if len(edi_string) <= ELEMENT_SEPARATOR_OFFSET:
            raise FormatError(
                f"Interchange header too short to discover delimiters ({len(edi_string)} characters)."
            )
        element_separator = edi_string[ELEMENT_SEPARATOR_OFFSET]
        if len(edi_string) > SEGMENT_TERMINATOR_OFFSET:
            segment_terminator = edi_string[SEGMENT_TERMINATOR_OFFSET]
        else:
            logger.warning(f"Content shorter than the ISA preamble. Falling back to default segment terminator '{DEFAULT_SEGMENT_TERMINATOR}'.")
            segment_terminator = DEFAULT_SEGMENT_TERMINATOR
        logger.debug(f"Delimiters detected: Element='{element_separator}', Segment='{segment_terminator}'")
        return element_separator, segment_terminator

    def _segmentize(self, edi_string: str, segment_terminator: str) -> List[str]:
        if segment_terminator in ('\r', '\n'):
            edi_content = edi_string.replace('\r\n', '\n').replace('\r', '\n')
            segment_terminator = '\n'
        else:
            edi_content = edi_string.replace('\r', '').replace('\n', '')
        return [seg for seg in edi_content.split(segment_terminator) if seg.strip()]

    def parse(self, edi_string: str) -> Dict[str, Any]:
        clean_edi = (edi_string or "").lstrip()
        element_separator, segment_terminator = self._detect_delimiters(clean_edi)

        envelope: Dict[str, Any] = {}
        transactions: List[Dict[str, Any]] = []
        current_transaction: Optional[Dict[str, Any]] = None
        dropped = 0

        for raw_segment in self._segmentize(clean_edi, segment_terminator):
            elements = raw_segment.split(element_separator)
            segment_id = elements[0].strip()
            node = _segment_node(elements)

            if segment_id in ENVELOPE_SEGMENTS:
                envelope[segment_id] = node
            elif segment_id == 'ST':
                if current_transaction is not None:
                    logger.warning(f"Transaction {current_transaction['ST'].get('02')} not closed by SE before the next ST. Discarding it.")
                current_transaction = {'ST': node}
            elif segment_id == 'SE':
                if current_transaction is not None:
                    current_transaction['SE'] = node
                    transactions.append(current_transaction)
                    current_transaction = None
            elif current_transaction is not None:
                _add_segment(current_transaction, segment_id, node)
            else:
                dropped += 1
                logger.debug(f"Dropping segment '{segment_id}' outside of any transaction.")

        if dropped:
            logger.warning(f"Dropped {dropped} segment(s) found outside ST/SE.")
        logger.info(f"Parsed X12 interchange with {len(transactions)} transaction(s).")

        return {
            "envelope": envelope,
            "transactions": transactions,
            "_metadata": {
                "transactionCount": len(transactions),
                "elementSeparator": element_separator,
                "segmentTerminator": segment_terminator,
            },
        }
