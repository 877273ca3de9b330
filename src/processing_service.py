import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from config_manager import ConfigManager
from fixed_width_parser import FixedWidthParser
from mapping_engine import MappingEngine
from processing_models import ProcessingContext, ProcessingResult
from x12_parser import X12Parser

logger = logging.getLogger(__name__)


class RecordSink(ABC):
    """Persistence collaborator. Builds its inserts from each record's own keys."""

    @abstractmethod
    def save_records(self, records_by_table: Dict[str, List[Dict[str, Any]]], file_name: str) -> Dict[str, int]:
        """Persists the records and returns the insert count per table."""


class EdiProcessingService:
    """
    Document processing boundary: parse -> validate -> map -> persist.

    Every outcome is reported as a ProcessingResult; nothing is raised past
    process_document.
    """

    def __init__(self, config_manager: ConfigManager, mapping_engine: Optional[MappingEngine] = None,
                 record_sink: Optional[RecordSink] = None):
        self.config_manager = config_manager
        self.mapping_engine = mapping_engine or MappingEngine()
        self.record_sink = record_sink
        self.x12_parser = X12Parser()
        self.fixed_width_parser = FixedWidthParser()

    def parse_document(self, content: str, source_format: str, schema_name: Optional[str] = None,
                       partner_id: Optional[str] = None) -> Dict[str, Any]:
        if source_format == "X12":
            return self.x12_parser.parse(content)
        if not schema_name:
            raise ValueError("A fixed-width schema name is required for FIXED_WIDTH documents")
        schema = self.config_manager.get_fixed_width_schema(schema_name, partner_id)
        if schema is None:
            raise ValueError(f"Fixed-width schema not found: {schema_name}")
        return self.fixed_width_parser.parse(content, schema)

    def process_document(self, content: str, partner_id: str, file_name: str, mapping_name: str,
                         schema_name: Optional[str] = None) -> ProcessingResult:
        """
        Process one inbound document.

        Args:
            content: Raw document text
            partner_id: Trading partner the document came from
            file_name: Original file name, exposed to mappings as context.fileName
            mapping_name: Mapping config file name (e.g., "edi315-mapping.yml")
            schema_name: Fixed-width schema file name, required for FIXED_WIDTH configs

        Returns:
            ProcessingResult with status SUCCESS, VALIDATION_FAILED or ERROR
        """
        start = time.monotonic()
        message_type: Optional[str] = None

        def elapsed_ms() -> int:
            return int((time.monotonic() - start) * 1000)

        logger.info(f"Processing file: {file_name} for partner: {partner_id} with mapping: {mapping_name}")
        try:
            config = self.config_manager.get_mapping_config(mapping_name, partner_id)
            if config is None:
                raise ValueError(f"Mapping config not found: {mapping_name}")
            message_type = config.ediType

            document = self.parse_document(content, config.sourceFormat, schema_name, partner_id)

            context = ProcessingContext(partnerId=partner_id, fileName=file_name, ediType=config.ediType,
                                        timestamp=datetime.now())

            mapping_result = self.mapping_engine.transform(document, config, partner_id, context)
            if not mapping_result.success:
                logger.warning(f"File {file_name} failed validation: {mapping_result.errors}")
                return ProcessingResult.validation_failed(message_type, file_name, partner_id,
                                                          mapping_result.errors, elapsed_ms())

            if self.record_sink is not None:
                insert_counts = self.record_sink.save_records(mapping_result.recordsByTable, file_name)
            else:
                insert_counts = {table: len(rows) for table, rows in mapping_result.recordsByTable.items()}

            logger.info(f"Processed file {file_name}: {mapping_result.get_total_records()} records, inserts={insert_counts}")
            return ProcessingResult.success(message_type, file_name, partner_id,
                                            mapping_result.get_total_records(), insert_counts, elapsed_ms())

        except Exception as e:
            logger.error(f"Error processing file: {file_name}: {e}", exc_info=True)
            return ProcessingResult.error(message_type, file_name, partner_id, str(e), elapsed_ms())
