#!/usr/bin/env python3
"""
EDI Mapping Command Line Tool

Parses X12 or fixed-width files into the generic document tree and, given a
mapping configuration, maps the document into records per target table.

Usage:
    python main.py input.edi                                          # Parse X12 to input.json
    python main.py input.edi output.json                              # Parse to specific output file
    python main.py input.txt --config-dir cfg --schema railinc-schema.yml
    python main.py input.edi --config-dir cfg --mapping edi315-mapping.yml --partner CMACGM
"""

import argparse
import json
import logging
import sys
from datetime import datetime
from pathlib import Path

# Add src to path for imports when not installed
sys.path.insert(0, str(Path(__file__).parent / "src"))

from config_manager import ConfigManager
from processing_models import ProcessingContext
from processing_service import EdiProcessingService


def configure_logging(level: str):
    logging.basicConfig(
        level=level.upper(),
        format="[%(asctime)s] [%(levelname)s] [%(name)s:%(lineno)d] - %(message)s",
        stream=sys.stderr,
        force=True,
    )


def process_file(args) -> int:
    """Parse (and optionally map) an input file and save the result as JSON."""

    print(f"EDI Mapper - Processing {args.input_file}")
    print("=" * 50)

    try:
        print(f"Loading input file: {args.input_file}")
        with open(args.input_file, 'r') as f:
            content = f.read()
        print(f"Loaded {len(content)} characters")

        print(f"Loading configuration from: {args.config_dir}")
        config_manager = ConfigManager(args.config_dir)
        service = EdiProcessingService(config_manager)

        mapping_config = None
        if args.mapping:
            mapping_config = config_manager.get_mapping_config(args.mapping, args.partner)
            if mapping_config is None:
                print(f"Error: Mapping config not found: {args.mapping}")
                return 1
            source_format = mapping_config.sourceFormat
        else:
            source_format = "FIXED_WIDTH" if args.schema else "X12"

        print(f"\nParsing {source_format} content...")
        document = service.parse_document(content, source_format, args.schema, args.partner)
        print("Document parsed successfully!")

        metadata = document.get("_metadata", {})
        print(f"\nParsing Results:")
        if source_format == "X12":
            isa = document.get("envelope", {}).get("ISA", {})
            print(f"  Interchange Control Number: {isa.get('13')}")
            print(f"  Sender ID: {isa.get('06')}")
            print(f"  Receiver ID: {isa.get('08')}")
            print(f"  Transaction Sets: {metadata.get('transactionCount')}")
        else:
            print(f"  Header: {'present' if document.get('header') is not None else 'missing'}")
            print(f"  Data Records: {metadata.get('recordCount')}")
            print(f"  Trailer: {'present' if document.get('trailer') is not None else 'missing'}")

        output = document
        if mapping_config is not None:
            print(f"\nMapping with {args.mapping}...")
            context = ProcessingContext(partnerId=args.partner, fileName=Path(args.input_file).name,
                                        ediType=mapping_config.ediType, timestamp=datetime.now())
            result = service.mapping_engine.transform(document, mapping_config, args.partner, context)

            if not result.success:
                print(f"Document failed validation with {len(result.errors)} error(s):")
                for i, error in enumerate(result.errors[:5]):
                    print(f"  {i+1}. {error}")
                if len(result.errors) > 5:
                    print(f"  ... and {len(result.errors) - 5} more errors")
                return 1

            for table, records in result.recordsByTable.items():
                print(f"  {table}: {len(records)} record(s)")
            output = result.recordsByTable

        print(f"\nGenerating JSON output...")
        json_output = json.dumps(output, indent=2, default=str)

        with open(args.output_file, 'w') as f:
            f.write(json_output)

        print(f"JSON output saved to: {args.output_file}")
        print(f"Output size: {len(json_output):,} characters")

        return 0

    except FileNotFoundError as e:
        print(f"Error: File not found: {e}")
        return 1
    except Exception as e:
        print(f"Error during EDI processing: {e}")
        import traceback
        traceback.print_exc()
        return 1


def main():
    """Main entry point with command line argument parsing."""

    parser = argparse.ArgumentParser(
        description="Parse X12 and fixed-width files to JSON and map them into table records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py status.edi                                    # Parse status.edi -> status.json
  python main.py status.edi out.json                           # Parse to specific output
  python main.py railinc.txt --config-dir config --schema railinc-schema.yml
  python main.py status.edi --config-dir config --mapping edi315-mapping.yml --partner CMACGM
        """
    )

    parser.add_argument('input_file', help='Input X12 or fixed-width file')
    parser.add_argument('output_file', nargs='?',
                       help='Output JSON file (default: input_file.json)')
    parser.add_argument('--config-dir', default='/opt/edi/config',
                       help='Directory holding mapping configs and schemas (default: /opt/edi/config)')
    parser.add_argument('--mapping', help='Mapping config file name; maps the document into records')
    parser.add_argument('--schema', help='Fixed-width schema file name')
    parser.add_argument('--partner', help='Trading partner id for partner-specific configs')
    parser.add_argument('--log-level', default='WARNING',
                       choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                       help='Logging level (default: WARNING)')

    args = parser.parse_args()
    configure_logging(args.log_level)

    # Set default output file if not provided
    if not args.output_file:
        input_path = Path(args.input_file)
        args.output_file = str(input_path.with_suffix('.json'))

    # Check if input file exists
    if not Path(args.input_file).exists():
        print(f"Error: Input file not found: {args.input_file}")
        return 1

    return process_file(args)


if __name__ == "__main__":
    exit(main())
