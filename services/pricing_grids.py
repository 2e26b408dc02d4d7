# services/pricing_grids.py
"""
Pricing grid data: normalising the grid shapes found in stored data and uploads,
validating them, and looking up a price for a width and drop.

Standard shape (as stored):
    {"width_columns": [60, 90, 120], "drop_rows": [{"drop": 100, "prices": [..]}], "unit": "cm"}
prices are read as drop_rows[drop_index]["prices"][width_index].
"""

from __future__ import annotations

import io
import logging
import math
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
from openpyxl import load_workbook

from services.exceptions import PricingGridError

logger = logging.getLogger(__name__)

UNITS = ("cm", "mm")
MM_THRESHOLD = 500          # largest dimension at or above this is taken to be mm
EPSILON = 1e-9


@dataclass
class DropRow:
    drop: float
    prices: List[float]


@dataclass
class GridData:
    width_columns: List[float]
    drop_rows: List[DropRow]
    unit: str = "cm"
    currency: Optional[str] = None
    version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "width_columns": list(self.width_columns),
            "drop_rows": [{"drop": r.drop, "prices": list(r.prices)} for r in self.drop_rows],
            "unit": self.unit,
            "version": self.version,
        }
        if self.currency:
            data["currency"] = self.currency
        return data


def _to_number(value: Any) -> float:
    """Numbers pass through; strings like '$1,250.00' or '120cm' are cleaned first; anything else is 0."""
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return 0.0 if isinstance(value, float) and math.isnan(value) else float(value)
    if isinstance(value, str):
        cleaned = re.sub(r'[^0-9.\-]', '', value)
        try:
            return float(cleaned)
        except ValueError:
            return 0.0
    return 0.0


def _first(data: Dict[str, Any], *keys):
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def infer_unit(data: Dict[str, Any]) -> str:
    """Explicit unit wins; otherwise any dimension of 500 or more means mm."""
    unit = data.get("unit") if isinstance(data, dict) else None
    if unit in UNITS:
        return unit

    max_value = 0.0
    for key in ("width_columns", "widthColumns", "widthRanges", "widths",
                "drop_rows", "dropRows", "dropRanges", "heights"):
        values = data.get(key) if isinstance(data, dict) else None
        if not isinstance(values, list):
            continue
        for v in values:
            num = _to_number(v.get("drop")) if isinstance(v, dict) else _to_number(v)
            max_value = max(max_value, num)

    return "mm" if max_value >= MM_THRESHOLD else "cm"


def _build(widths: List[Any], drops: List[Any], price_rows: List[List[Any]], unit: str,
           currency: Optional[str] = None) -> GridData:
    """Sort both axes ascending, keeping every price under its own width and drop."""
    width_values = [_to_number(w) for w in widths]
    width_order = sorted(range(len(width_values)), key=lambda i: width_values[i])

    rows = []
    for drop, prices in zip(drops, price_rows):
        prices = [_to_number(p) for p in (prices or [])]
        # Ragged rows are kept as given so validate_grid can report them
        ordered = [prices[i] for i in width_order] if len(prices) == len(width_values) else prices
        rows.append(DropRow(drop=_to_number(drop), prices=ordered))
    rows.sort(key=lambda r: r.drop)

    return GridData(
        width_columns=[width_values[i] for i in width_order],
        drop_rows=rows,
        unit=unit,
        currency=currency,
    )


def normalize_grid_data(data: Any) -> Optional[GridData]:
    """
    Bring any known grid shape to the standard one.

    Handles the standard/camelCase shape with drop row objects, widthRanges/dropRanges
    with a 2-D price list, flat widthColumns/dropRows with a prices dict keyed
    "width_drop", and widths/heights with a 2-D price list. Returns None when the data
    can't be read as a grid.
    """
    if isinstance(data, GridData):
        return data
    if not isinstance(data, dict):
        logger.warning("Grid data is not an object")
        return None

    unit = infer_unit(data)
    currency = data.get("currency")
    widths = _first(data, "width_columns", "widthColumns")
    drops = _first(data, "drop_rows", "dropRows")

    try:
        # Drop row objects carrying their own prices
        if isinstance(widths, list) and isinstance(drops, list) and drops and isinstance(drops[0], dict):
            return _build(widths, [r.get("drop") for r in drops], [r.get("prices") or [] for r in drops],
                          unit, currency)

        # Flat axes with a prices dict
        prices = data.get("prices")
        if isinstance(widths, list) and isinstance(drops, list) and drops and isinstance(prices, dict):
            price_rows = []
            for drop in drops:
                d = _to_number(drop)
                row = []
                for width in widths:
                    w = _to_number(width)
                    keys = [f"{_fmt(w)}_{_fmt(d)}", f"{_fmt(w)}-{_fmt(d)}", f"{_fmt(d)}_{_fmt(w)}",
                            f"{width}_{drop}", f"{width}-{drop}", f"{drop}_{width}"]
                    row.append(next((prices[k] for k in keys if k in prices), 0))
                price_rows.append(row)
            return _build(widths, drops, price_rows, unit, currency)

        # Range lists with a 2-D price list
        if isinstance(data.get("widthRanges"), list) and isinstance(data.get("dropRanges"), list) \
                and isinstance(prices, list):
            return _build(data["widthRanges"], data["dropRanges"], prices, unit, currency)

        # widths/heights terminology
        if isinstance(data.get("widths"), list) and isinstance(data.get("heights"), list) \
                and isinstance(prices, list):
            return _build(data["widths"], data["heights"], prices, unit, currency)
    except (TypeError, AttributeError) as e:
        logger.error(f"Error normalising grid: {e}")
        return None

    logger.warning("Could not normalise grid data")
    return None


def _fmt(num: float) -> str:
    return str(int(num)) if float(num).is_integer() else str(num)


def validate_grid(grid: GridData) -> Tuple[bool, List[str]]:
    errors = []

    if not grid.width_columns:
        errors.append("No width columns defined")
    if not grid.drop_rows:
        errors.append("No drop rows defined")

    for idx, row in enumerate(grid.drop_rows):
        if len(row.prices) != len(grid.width_columns):
            errors.append(
                f"Row {idx} (drop {_fmt(row.drop)}) has {len(row.prices)} prices "
                f"but expected {len(grid.width_columns)}"
            )

    drops = [r.drop for r in grid.drop_rows]
    if len(set(drops)) != len(drops):
        errors.append("Duplicate drop values found")
    if len(set(grid.width_columns)) != len(grid.width_columns):
        errors.append("Duplicate width values found")

    if any(w <= 0 for w in grid.width_columns):
        errors.append("Width values must be positive")
    if any(d <= 0 for d in drops):
        errors.append("Drop values must be positive")

    return not errors, errors


def convert_grid_unit(grid: GridData, target_unit: str) -> GridData:
    if target_unit not in UNITS:
        raise PricingGridError(f"Unknown unit {target_unit!r}")
    if grid.unit == target_unit:
        return grid

    factor = 10 if target_unit == "mm" else 0.1
    return GridData(
        width_columns=[w * factor for w in grid.width_columns],
        drop_rows=[DropRow(drop=r.drop * factor, prices=list(r.prices)) for r in grid.drop_rows],
        unit=target_unit,
        currency=grid.currency,
        version=grid.version,
    )


def get_price_from_grid(grid_data: Any, width: float, height: float, input_unit: str = "cm") -> float:
    """
    Price for a width and drop.

    Each dimension rounds up to the next logged grid point; past the last point the
    largest column/row is used. Missing or unreadable grids price at 0.
    """
    grid = normalize_grid_data(grid_data) if grid_data else None
    if grid is None or not grid.width_columns or not grid.drop_rows:
        return 0.0

    w, d = _to_number(width), _to_number(height)
    if input_unit != grid.unit:
        factor = 0.1 if input_unit == "mm" else 10
        w, d = w * factor, d * factor

    width_idx = next((i for i, col in enumerate(grid.width_columns) if col >= w - EPSILON),
                     len(grid.width_columns) - 1)
    drop_idx = next((i for i, row in enumerate(grid.drop_rows) if row.drop >= d - EPSILON),
                    len(grid.drop_rows) - 1)

    row = grid.drop_rows[drop_idx]
    if width_idx >= len(row.prices):
        logger.warning(f"Grid row for drop {_fmt(row.drop)} has no price for width column {width_idx}")
        return 0.0
    return row.prices[width_idx]


# ========== Upload parsing ==========

def _grid_from_rows(rows: List[List[Any]]) -> GridData:
    rows = [r for r in rows if r and any(c not in (None, "") and not _is_nan(c) for c in r)]
    if len(rows) < 2:
        raise PricingGridError("Grid needs a header row of widths and at least one drop row")

    widths = [c for c in rows[0][1:] if c not in (None, "") and not _is_nan(c)]
    drops = [r[0] for r in rows[1:]]
    prices = [list(r[1:len(widths) + 1]) for r in rows[1:]]

    grid = normalize_grid_data({"widthRanges": widths, "dropRanges": drops, "prices": prices})
    if grid is None:
        raise PricingGridError("Could not read pricing grid")
    return grid


def _is_nan(value: Any) -> bool:
    return isinstance(value, float) and math.isnan(value)


def parse_grid_csv(text: str) -> GridData:
    """CSV grid: first row is widths (after a corner cell), first column is drops."""
    try:
        df = pd.read_csv(io.StringIO(text or ""), header=None, dtype=str, skip_blank_lines=True)
    except (pd.errors.EmptyDataError, pd.errors.ParserError) as e:
        raise PricingGridError(f"Could not read pricing grid CSV: {e}")
    return _grid_from_rows(df.values.tolist())


def parse_grid_workbook(file) -> GridData:
    """Same layout as the CSV, read from the first sheet of an .xlsx upload."""
    wb = load_workbook(io.BytesIO(file.read()), data_only=True, read_only=True)
    try:
        ws = wb.worksheets[0]
        return _grid_from_rows([list(r) for r in ws.iter_rows(values_only=True)])
    finally:
        wb.close()
