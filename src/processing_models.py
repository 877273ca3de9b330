from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any

# Per-document models. A context, mapping result and processing result
# live for one document and are discarded once the caller has persisted it.

class ProcessingContext(BaseModel):
    """Values available to every field transform as `context.<key>`."""
    partnerId: Optional[str] = None
    fileName: Optional[str] = None
    ediType: Optional[str] = None
    timestamp: Optional[datetime] = None
    additional: Dict[str, Any] = Field(default_factory=dict)

    def get_value(self, key: str) -> Any:
        if key in ("partnerId", "fileName", "ediType", "timestamp"):
            return getattr(self, key)
        return self.additional.get(key)

    def set_value(self, key: str, value: Any):
        self.additional[key] = value

class MappingResult(BaseModel):
    success: bool = True
    errors: List[str] = Field(default_factory=list)
    recordsByTable: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)

    @classmethod
    def failed(cls, errors: List[str]) -> "MappingResult":
        return cls(success=False, errors=list(errors))

    def add_records(self, table_name: str, records: List[Dict[str, Any]]):
        self.recordsByTable.setdefault(table_name, []).extend(records)

    def get_records(self, table_name: str) -> List[Dict[str, Any]]:
        """Records for one table, in production order. Unknown tables give an empty list."""
        return self.recordsByTable.get(table_name, [])

    def get_total_records(self) -> int:
        return sum(len(records) for records in self.recordsByTable.values())

class ProcessingStatus(str, Enum):
    SUCCESS = "SUCCESS"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    ERROR = "ERROR"

class ProcessingResult(BaseModel):
    """Outcome of one document at the processing boundary. Never raised, always returned."""
    status: ProcessingStatus
    messageType: Optional[str] = None
    fileName: Optional[str] = None
    partnerId: Optional[str] = None
    recordCount: int = 0
    successCount: int = 0
    failedCount: int = 0
    insertCounts: Dict[str, int] = Field(default_factory=dict)
    validationErrors: List[str] = Field(default_factory=list)
    errorMessage: Optional[str] = None
    durationMs: int = 0

    @classmethod
    def success(cls, message_type: str, file_name: str, partner_id: str, record_count: int,
                insert_counts: Dict[str, int], duration_ms: int) -> "ProcessingResult":
        return cls(status=ProcessingStatus.SUCCESS, messageType=message_type, fileName=file_name,
                   partnerId=partner_id, recordCount=record_count, successCount=record_count,
                   insertCounts=insert_counts, durationMs=duration_ms)

    @classmethod
    def validation_failed(cls, message_type: str, file_name: str, partner_id: str,
                          validation_errors: List[str], duration_ms: int) -> "ProcessingResult":
        return cls(status=ProcessingStatus.VALIDATION_FAILED, messageType=message_type, fileName=file_name,
                   partnerId=partner_id, validationErrors=validation_errors, durationMs=duration_ms)

    @classmethod
    def error(cls, message_type: Optional[str], file_name: str, partner_id: str,
              error_message: str, duration_ms: int) -> "ProcessingResult":
        return cls(status=ProcessingStatus.ERROR, messageType=message_type, fileName=file_name,
                   partnerId=partner_id, errorMessage=error_message, durationMs=duration_ms)

    def is_success(self) -> bool:
        return self.status == ProcessingStatus.SUCCESS

    def has_errors(self) -> bool:
        return self.status in (ProcessingStatus.ERROR, ProcessingStatus.VALIDATION_FAILED)
