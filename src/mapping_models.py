from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional, Dict, Any, Literal

# --- Fixed-width schema models ---
class FieldDefinition(BaseModel):
    name: str
    start: int
    end: int
    trim: bool = False
    required: bool = False
    description: Optional[str] = None

class FixedWidthSchema(BaseModel):
    name: str
    version: Optional[str] = None
    headerPrefix: str = Field("CLM", description="Literal line prefix that marks the header line.")
    trailerPrefix: str = Field("EOM", description="Literal line prefix that marks the trailer line.")
    headerFields: List[FieldDefinition] = Field(default_factory=list)
    dataFields: List[FieldDefinition] = Field(default_factory=list)
    trailerFields: List[FieldDefinition] = Field(default_factory=list)

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_text(cls, value: Any) -> Optional[str]:
        return None if value is None else str(value)

# --- Closed variants for string-keyed dispatch ---
class TransformName(str, Enum):
    DIRECT = "DIRECT"
    CONSTANT = "CONSTANT"
    CURRENT_TIMESTAMP = "CURRENT_TIMESTAMP"
    CONCAT = "CONCAT"
    BUILD_DATETIME = "BUILD_DATETIME"
    DIVIDE_100 = "DIVIDE_100"
    TRIM_OR_NULL = "TRIM_OR_NULL"
    UPPERCASE = "UPPERCASE"
    LOOKUP = "LOOKUP"
    QUALIFIED_SEGMENT = "QUALIFIED_SEGMENT"
    COALESCE = "COALESCE"
    CONDITIONAL = "CONDITIONAL"
    BOOKNO_FLAG = "BOOKNO_FLAG"
    ID_MAP_FLAG = "ID_MAP_FLAG"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def resolve(cls, name: Optional[str]) -> "TransformName":
        """Maps a configured transform name to its variant. Absent names mean DIRECT."""
        if not name:
            return cls.DIRECT
        try:
            return cls(name)
        except ValueError:
            return cls.UNKNOWN

class RuleKind(str, Enum):
    HEADER_REQUIRED = "HEADER_REQUIRED"
    TRAILER_REQUIRED = "TRAILER_REQUIRED"
    RECORD_COUNT_MATCH = "RECORD_COUNT_MATCH"
    REQUIRED_SEGMENT = "REQUIRED_SEGMENT"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def resolve(cls, name: Optional[str]) -> "RuleKind":
        try:
            return cls(name)
        except ValueError:
            return cls.UNKNOWN

# --- Mapping configuration models ---
class SourceConfig(BaseModel):
    """One candidate of a COALESCE field."""
    source: Optional[str] = None
    transform: Optional[str] = None
    concatFields: Optional[List[str]] = None

class FieldMapping(BaseModel):
    name: str
    source: Optional[str] = None
    type: Optional[str] = None
    format: Optional[str] = None
    # Accepted in mapping files but not enforced by the engine
    required: bool = Field(False, description="Documentation only; an absent value still maps to None.")
    maxLength: Optional[int] = Field(None, description="Documentation only; values are not truncated.")

    transform: Optional[str] = None
    value: Optional[Any] = None
    concatWith: Optional[str] = None
    concatFields: Optional[List[str]] = None
    sourceFields: Optional[Dict[str, str]] = None
    sources: Optional[List[SourceConfig]] = None

    lookupTable: Optional[str] = None
    lookupKeyColumn: Optional[str] = None
    lookupKeyExpr: Optional[str] = None
    lookupColumn: Optional[str] = None
    lookupCondition: Optional[str] = None
    lookupFallbackCondition: Optional[str] = None

    condition: Optional[str] = None
    trueValue: Optional[Any] = None
    falseValue: Optional[Any] = None

class TargetTableConfig(BaseModel):
    table: str
    type: Literal["HEADER", "DETAIL"] = "HEADER"
    loopPath: Optional[str] = None
    parentKeys: List[str] = Field(default_factory=list)
    condition: Optional[str] = None
    description: Optional[str] = None
    fields: List[FieldMapping] = Field(default_factory=list)

class ValidationRule(BaseModel):
    rule: str
    field: Optional[str] = None
    segments: List[str] = Field(default_factory=list)
    expectedField: Optional[str] = None
    # Accepted in mapping files; no built-in rule reads them
    fields: Optional[List[str]] = None
    expectedValue: Optional[str] = None
    actualField: Optional[str] = None
    message: Optional[str] = None

class PartnerOverride(BaseModel):
    fieldOverrides: List[FieldMapping] = Field(default_factory=list)
    schemaOverrides: Dict[str, Any] = Field(default_factory=dict)

class MappingConfig(BaseModel):
    ediType: str
    description: Optional[str] = None
    sourceFormat: Literal["X12", "FIXED_WIDTH"]
    version: Optional[str] = None
    targets: List[TargetTableConfig] = Field(default_factory=list)
    validations: List[ValidationRule] = Field(default_factory=list)
    partnerOverrides: Dict[str, PartnerOverride] = Field(default_factory=dict)

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_text(cls, value: Any) -> Optional[str]:
        # YAML reads an unquoted 1.0 as a float
        return None if value is None else str(value)
