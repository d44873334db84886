#!/usr/bin/env python3
"""Sample batch generator for manual CLI runs.

Writes a synthetic counterparty spreadsheet whose headers match one of the
bundled profiles in config/profiles.yml:
- Row 1: Header row
- Row 2+: One service per row

A share of rows can be made invalid (non-numeric / non-positive amounts),
adjusted (negative withholding, CHUBB only) or uncategorised (empty service,
CHUBB only) to exercise rejection, variant split and exclusion paths.
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

PROFILES = ("chubb", "axa", "club_asistencia")
CHUBB_SERVICES = ["GRUA", "GRUA", "GRUA", "PASO DE CORRIENTE", "CAMBIO DE LLANTA", "GASOLINA"]


def _amounts(rng: np.random.Generator, rows: int) -> list[float]:
    return np.round(rng.uniform(350.0, 4500.0, rows), 2).tolist()


def _break_amounts(rng: np.random.Generator, values: list[Any], invalid_ratio: float) -> list[Any]:
    invalid = rng.random(len(values)) < invalid_ratio
    bad_values = ["N/D", "", 0, -100]
    return [bad_values[i % len(bad_values)] if bad else v for i, (v, bad) in enumerate(zip(values, invalid))]


def generate_batch(
    profile: str,
    rows: int,
    invalid_ratio: float = 0.0,
    adjusted_ratio: float = 0.3,
    uncategorised_ratio: float = 0.0,
    seed: int = 42,
) -> pd.DataFrame:
    """Build a DataFrame shaped like a counterparty's monthly service report."""
    rng = np.random.default_rng(seed)
    amounts = _break_amounts(rng, _amounts(rng, rows), invalid_ratio)

    if profile == "chubb":
        services = rng.choice(CHUBB_SERVICES, rows).tolist()
        services = ["" if rng.random() < uncategorised_ratio else s for s in services]
        retention = [
            round(-0.04 * a, 2) if isinstance(a, float) and rng.random() < adjusted_ratio else 0
            for a in amounts
        ]
        return pd.DataFrame(
            {
                "No. Caso": [f"CHB-{100000 + i}" for i in range(rows)],
                "Servicio": services,
                "Subtotal": amounts,
                "Retención": retention,
            }
        )

    if profile == "axa":
        return pd.DataFrame(
            {
                "FACTURA": [f"A{5000 + i}" for i in range(rows)],
                "No. ORDEN": rng.integers(100000, 999999, rows).tolist(),
                "No. FOLIO": rng.integers(1000, 99999, rows).tolist(),
                "AUTORIZACION": [f"AUT-{rng.integers(10000, 99999)}" for _ in range(rows)],
                "IMPORTE": amounts,
            }
        )

    dates = pd.date_range("2024-01-01", "2024-12-31", periods=60)
    return pd.DataFrame(
        {
            "Fecha": pd.DatetimeIndex(rng.choice(dates, rows)).strftime("%d/%m/%Y").tolist(),
            "Folio CAS": [f"CAS{200000 + i}" for i in range(rows)],
            "PEDIDO SAP": rng.integers(4500000000, 4599999999, rows).tolist(),
            "Total": amounts,
        }
    )


def write_batch(df: pd.DataFrame, output_path: Path) -> None:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if output_path.suffix.lower() == ".csv":
        df.to_csv(output_path, index=False)
    else:
        with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
            df.to_excel(writer, sheet_name="Servicios", index=False)
    print(f"Created sample batch: {output_path}")
    print(f"  Rows: {len(df)}")
    print(f"  Columns: {', '.join(map(str, df.columns))}")


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Generate a synthetic counterparty spreadsheet",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # 40 CHUBB services, a third with withholding
  %(prog)s chubb.xlsx --profile chubb --rows 40

  # AXA file with a few broken amounts (rejected by validation)
  %(prog)s axa.xlsx --profile axa --invalid-ratio 0.1
        """,
    )
    parser.add_argument("output", type=Path, help="Output file (.xlsx or .csv)")
    parser.add_argument("--profile", choices=PROFILES, default="chubb")
    parser.add_argument("--rows", type=int, default=40, help="Number of data rows (default: 40)")
    parser.add_argument("--invalid-ratio", type=float, default=0.0, help="Share of rows with bad amounts")
    parser.add_argument("--adjusted-ratio", type=float, default=0.3, help="Share of CHUBB rows with withholding")
    parser.add_argument("--uncategorised-ratio", type=float, default=0.0, help="Share of CHUBB rows with no service")
    parser.add_argument("--seed", type=int, default=42, help="Random seed (default: 42)")
    args = parser.parse_args()

    if args.rows <= 0:
        print("Error: --rows must be positive", file=sys.stderr)
        return 1
    for name in ("invalid_ratio", "adjusted_ratio", "uncategorised_ratio"):
        if not 0.0 <= getattr(args, name) <= 1.0:
            print(f"Error: --{name.replace('_', '-')} must be between 0 and 1", file=sys.stderr)
            return 1

    df = generate_batch(
        args.profile,
        args.rows,
        invalid_ratio=args.invalid_ratio,
        adjusted_ratio=args.adjusted_ratio,
        uncategorised_ratio=args.uncategorised_ratio,
        seed=args.seed,
    )
    try:
        write_batch(df, args.output)
    except OSError as e:
        print(f"Error writing batch: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
