"""
valuation_report.py — Print and export a valuation report from a JSON file.

Reads valuation inputs (camelCase keys, as saved by the app; missing keys
take the defaults), computes the outputs and prints the report table.
Optionally writes the same table as CSV and/or XLSX.

Usage:
    python scripts/valuation_report.py \
        --inputs-json examples/aapl_valuation.json \
        --symbol AAPL \
        --csv outputs/AAPL_valuation.csv \
        --xlsx outputs/AAPL_valuation.xlsx
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from stockdesk.services.modeling.valuation import ValuationInputs, compute_valuation
from stockdesk.services.modeling.valuation_report import (
    build_valuation_report,
    render_csv,
    render_xlsx,
)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Compute a fair-price valuation and print / export the report"
    )
    parser.add_argument(
        "--inputs-json",
        type=str,
        required=True,
        help="Path to a JSON object of valuation inputs",
    )
    parser.add_argument(
        "--symbol",
        type=str,
        default="STOCK",
        help="Ticker shown in the report title",
    )
    parser.add_argument(
        "--csv",
        type=str,
        default=None,
        help="Optional path of a CSV file to write",
    )
    parser.add_argument(
        "--xlsx",
        type=str,
        default=None,
        help="Optional path of an XLSX file to write",
    )

    args = parser.parse_args()

    try:
        with Path(args.inputs_json).open("r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError("Inputs JSON must be an object")

        inputs = ValuationInputs.from_dict(data)
        rows = build_valuation_report(args.symbol.upper(), inputs, compute_valuation(inputs))

        for label, value in rows:
            if label or value != "":
                print(f"{label:<48} {value}")
            else:
                print()

        if args.csv:
            csv_path = Path(args.csv)
            csv_path.parent.mkdir(parents=True, exist_ok=True)
            csv_path.write_text(render_csv(rows), encoding="utf-8")
            print(f"\nWrote CSV report to {csv_path}")

        if args.xlsx:
            xlsx_path = Path(args.xlsx)
            xlsx_path.parent.mkdir(parents=True, exist_ok=True)
            xlsx_path.write_bytes(render_xlsx(rows))
            print(f"Wrote XLSX report to {xlsx_path}")

    except FileNotFoundError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)

    except (ValueError, json.JSONDecodeError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
