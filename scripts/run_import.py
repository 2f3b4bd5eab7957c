"""
Bulk Import Script.

Runs an import flow from the command line, for back-office staff loading
an agency's history in one go.

Usage:
    python scripts/run_import.py --operator <agent uuid> policeler.xlsx
    python scripts/run_import.py --flow claims --client <client uuid> hasarlar.xlsx
    python scripts/run_import.py --flow pdfs --operator <agent uuid> pdfs/*.pdf

Options:
    --flow       policies (default), claims, policy-companies or pdfs
    --operator   Agent the records belong to (default: IMPORT_OPERATOR_ID)
    --client     Attach every row to this client
    --sheet      Worksheet to read (default: first sheet)
    --verbose    Log every row decision
"""

import os
import sys
import json
import logging
import argparse
from pathlib import Path

from agency_import import ImportService, ImportContext, ImportRunError, BatchWriteError
from agency_import.config import load_config_from_dotenv

FLOW_CHOICES = ("policies", "claims", "policy-companies", "pdfs")


def run(args) -> dict:
    service = ImportService(config=load_config_from_dotenv())
    context = ImportContext(operator_id=args.operator, client_id=args.client)

    if args.flow == "pdfs":
        files = [(path.name, path.read_bytes()) for path in map(Path, args.files)]
        return service.attach_policy_pdfs(files, context).to_dict()

    results = {}
    for name in args.files:
        path = Path(name)
        outcome = service.import_file(path.read_bytes(), path.name, args.flow, context, sheet_name=args.sheet)
        results[path.name] = outcome.to_dict()
    return results


def main():
    parser = argparse.ArgumentParser(description="Import policies, claims or policy PDFs for an agency")
    parser.add_argument("files", nargs="+", help="Spreadsheets (.xlsx, .xls, .csv) or PDF files")
    parser.add_argument("--flow", choices=FLOW_CHOICES, default="policies")
    parser.add_argument("--operator", default=os.getenv("IMPORT_OPERATOR_ID"),
                        help="Agent id owning the imported records")
    parser.add_argument("--client", default=None, help="Client id every row belongs to")
    parser.add_argument("--sheet", default=None, help="Sheet name (Excel only)")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if not args.operator:
        print("ERROR: --operator or IMPORT_OPERATOR_ID is required.")
        sys.exit(1)

    try:
        results = run(args)
    except ImportRunError as e:
        print(f"ERROR: {e}")
        sys.exit(1)
    except BatchWriteError as e:
        print(f"ERROR: {e}")
        print(json.dumps(e.outcome.to_dict(), indent=2, ensure_ascii=False))
        sys.exit(2)

    print(json.dumps(results, indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
