import pytest
import sys
import os
import logging
from pathlib import Path

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import yaml

from mapping_models import FixedWidthSchema, MappingConfig

# ==============================================================================
# PYTEST CONFIGURATION & HOOKS
# ==============================================================================

def pytest_configure(config):
    """Configure pytest settings and markers."""
    config.addinivalue_line("markers", "unit: Pure unit tests with no external dependencies.")
    config.addinivalue_line("markers", "integration: Tests exercising several components together.")

@pytest.fixture(scope="session", autouse=True)
def setup_test_environment(pytestconfig):
    """Set up test environment with logging configuration."""
    # Use pytest's log_cli_level if available, otherwise default to INFO
    log_level = pytestconfig.getoption("log_cli_level") or "INFO"
    logging.basicConfig(
        level=log_level.upper(),
        format="[%(asctime)s] [%(levelname)s] [%(name)s:%(lineno)d] - %(message)s",
        stream=sys.stdout,
        force=True,
    )
    if log_level.upper() != "DEBUG":
        logging.getLogger("psycopg").setLevel(logging.WARNING)

    logging.info(f"Test logging configured with level: {log_level.upper()}")
    yield

# ==============================================================================
# SAMPLE DOCUMENTS
# ==============================================================================

@pytest.fixture(scope="session")
def edi315_string() -> str:
    """
    Provides a 315 (ocean shipment status) interchange with two transaction sets.

    Contains:
    - Transaction 0001: status VD, booking numbers BM and BN, a Q2 vessel segment,
      two R4 locations each followed by a DTM date
    - Transaction 0002: status AE, only a BN booking number, a single R4 location
    """
    return """
ISA*00*          *00*          *ZZ*CMACGM         *ZZ*OECGROUP       *220109*1200*U*00401*000012250*0*P*>~
GS*QO*CMACGM*OECGROUP*20220109*1200*12250*X*004010~
ST*315*0001~
B4***VD*20220109*1200**CMAU*1234567*L*4510*USNYC*UN~
N9*BM*BOOK123~
N9*BN*BKG456~
Q2*9123456*FR**20220110****123E*VESSEL ONE~
R4*L*UN*CNSHA*SHANGHAI~
DTM*140*20220105*0800~
R4*D*UN*USNYC*NEW YORK~
DTM*139*20220120*1600~
SE*10*0001~
ST*315*0002~
B4***AE*20220111*0930**TGHU*7654321*E*2200*USLAX*UN~
N9*BN*BKG789~
R4*L*UN*USLAX*LOS ANGELES~
SE*5*0002~
GE*2*12250~
IEA*1*000012250~
""".strip()

@pytest.fixture(scope="session")
def railinc_content() -> str:
    """
    Provides a fixed-width railcar event file: a CLM header, three data lines and
    an EOM trailer announcing three records. The third data line is truncated
    after the event date.
    """
    return "\n".join([
        "CLM20240118RAILINC   ",
        "TTGX123456AR20240115CHICAGO  0012500",
        "GATX000789DP20240116KANSAS CI0004250",
        "UTLX555555AR20240117",
        "EOM0000003",
    ])

# ==============================================================================
# CONFIGURATION DOCUMENTS
# ==============================================================================

RAILINC_SCHEMA_YAML = """
name: RAILINC
version: 1.0
headerPrefix: CLM
trailerPrefix: EOM
headerFields:
  - {name: recordType, start: 0, end: 3}
  - {name: fileDate, start: 3, end: 11}
  - {name: sender, start: 11, end: 21, trim: true}
dataFields:
  - {name: equipmentInitial, start: 0, end: 4}
  - {name: equipmentNumber, start: 4, end: 10, trim: true}
  - {name: eventCode, start: 10, end: 12}
  - {name: eventDate, start: 12, end: 20}
  - {name: location, start: 20, end: 29, trim: true}
  - {name: weight, start: 29, end: 36, trim: true}
trailerFields:
  - {name: recordType, start: 0, end: 3}
  - {name: recordCount, start: 3, end: 10}
"""

RAILINC_MAPPING_YAML = """
ediType: RAILINC
description: Railcar event records
sourceFormat: FIXED_WIDTH
version: 1.0
validations:
  - {rule: HEADER_REQUIRED, field: header.fileDate, message: File date is required}
  - {rule: TRAILER_REQUIRED, message: EOM trailer is required}
  - {rule: RECORD_COUNT_MATCH, expectedField: trailer.recordCount, message: Record count mismatch}
targets:
  - table: railinc_event
    condition: "${location}"
    fields:
      - {name: equipment, transform: CONCAT, source: equipmentInitial, concatWith: equipmentNumber}
      - {name: event_code, source: eventCode}
      - {name: event_date, source: eventDate, type: DATE}
      - {name: weight, transform: DIVIDE_100, source: weight, type: DECIMAL}
      - {name: location, transform: UPPERCASE, source: location}
      - {name: file_date, source: header.fileDate}
      - {name: sender, source: header.sender}
  - table: railinc_audit
    fields:
      - {name: equipment_initial, source: equipmentInitial}
      - {name: received_at, transform: CURRENT_TIMESTAMP}
      - {name: source_file, source: context.fileName}
"""

EDI315_MAPPING_YAML = """
ediType: "315"
description: Ocean shipment status
sourceFormat: X12
version: "2.1"
validations:
  - {rule: REQUIRED_SEGMENT, segments: [B4]}
targets:
  - table: edi315_header
    type: HEADER
    fields:
      - {name: sender_id, source: envelope.ISA.06}
      - {name: status_code, source: B4.03}
      - {name: equipment, transform: CONCAT, source: B4.07, concatWith: B4.08}
      - name: event_time
        transform: BUILD_DATETIME
        type: DATETIME
        format: yyyyMMddHHmm
        sourceFields: {year: B4.04, hour: B4.05}
      - {name: booking_no, transform: QUALIFIED_SEGMENT, source: "N9[01=BM].02"}
      - {name: booking_flag, transform: BOOKNO_FLAG}
      - name: vessel_name
        transform: COALESCE
        sources:
          - {source: Q2.09}
          - {source: "'UNKNOWN'"}
      - {name: weight, source: B4.10, type: INTEGER}
      - {name: file_name, source: context.fileName}
      - {name: partner, source: context.partnerId}
  - table: edi315_location
    type: DETAIL
    loopPath: R4
    parentKeys: [equipment, status_code]
    fields:
      - {name: function_code, source: "01"}
      - {name: location_code, source: "03"}
      - {name: location_name, transform: TRIM_OR_NULL, source: "04"}
      - {name: event_date, transform: QUALIFIED_SEGMENT, source: "DTM[_index].02"}
"""

@pytest.fixture(scope="session")
def railinc_schema() -> FixedWidthSchema:
    return FixedWidthSchema.model_validate(yaml.safe_load(RAILINC_SCHEMA_YAML))

@pytest.fixture(scope="session")
def railinc_mapping() -> MappingConfig:
    return MappingConfig.model_validate(yaml.safe_load(RAILINC_MAPPING_YAML))

@pytest.fixture(scope="session")
def edi315_mapping() -> MappingConfig:
    return MappingConfig.model_validate(yaml.safe_load(EDI315_MAPPING_YAML))

@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory with base files and one partner-specific mapping."""
    (tmp_path / "railinc-schema.yml").write_text(RAILINC_SCHEMA_YAML)
    (tmp_path / "railinc-mapping.yml").write_text(RAILINC_MAPPING_YAML)
    (tmp_path / "edi315-mapping.yml").write_text(EDI315_MAPPING_YAML)

    partner_dir = tmp_path / "partner-specific" / "CMACGM"
    partner_dir.mkdir(parents=True)
    (partner_dir / "edi315-mapping.yml").write_text(
        EDI315_MAPPING_YAML.replace("description: Ocean shipment status", "description: CMA CGM shipment status")
    )

    # Malformed documents are skipped at load time
    (tmp_path / "malformed.yml").write_text("targets: [unclosed\n")
    (tmp_path / "unknown-kind.yml").write_text("just: a value\n")

    return tmp_path
