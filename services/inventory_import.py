# services/inventory_import.py
"""
Inventory CSV import.

Turns an uploaded CSV into inventory item dicts and provides the pieces the batch
import processor is built from: a SKU generator and a chunk processor that upserts
one chunk by (user_id, sku) and reports which rows were new and which updated.
"""

import csv
import io
import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from openpyxl import Workbook

from services.batch_import import ImportResultRow, RowOutcome, RowStatus
from services.database import DatabaseManager
from services.exceptions import ImportValidationError
from services.helper import generate_sku, safe_float

logger = logging.getLogger(__name__)

TABLE = "inventory_items"

# Canonical field -> header aliases recognised when auto-detecting columns
MAPPING_RULES: Dict[str, List[str]] = {
    "name": ["name", "product_name", "item_name", "title", "product"],
    "sku": ["sku", "product_code", "code", "item_code", "part_number"],
    "category": ["category", "type", "product_type", "item_type"],
    "subcategory": ["subcategory", "sub_category", "subtype"],
    "description": ["description", "desc", "details", "notes"],
    "cost_price": ["cost_price", "cost", "purchase_price", "buy_price", "wholesale_price"],
    "selling_price": ["selling_price", "sell_price", "price", "retail_price", "rrp"],
    "quantity": ["quantity", "qty", "stock", "stock_quantity", "on_hand"],
    "unit": ["unit", "uom", "unit_of_measure", "measurement_unit"],
    "fabric_width": ["fabric_width", "width_cm", "width", "material_width"],
    "tags": ["tags", "labels", "keywords"],
}

ALLOWED_KEYS = (
    "name", "description", "sku", "category", "subcategory", "quantity", "unit",
    "cost_price", "selling_price", "unit_price", "supplier", "location", "reorder_point", "active",
    "fabric_width", "fabric_composition", "pattern_repeat_horizontal", "pattern_repeat_vertical",
    "price_per_meter", "price_per_unit", "markup_percentage",
    "color", "collection_name", "price_group", "product_category", "tags",
)

NUMERIC_KEYS = frozenset({
    "quantity", "cost_price", "selling_price", "unit_price", "reorder_point",
    "fabric_width", "pattern_repeat_horizontal", "pattern_repeat_vertical",
    "price_per_meter", "price_per_unit", "markup_percentage",
})

TRUE_VALUES = {"true", "yes", "y", "1"}


def clean_value(value):
    """Strip control characters (BOM included), a leading '=' and surrounding quotes/space."""
    if isinstance(value, str):
        value = re.sub(r'[\x00-\x1F\x7F-\x9F\uFEFF]', '', value)
        value = value.lstrip('=')
        value = value.replace('"', '').strip()
        return value
    return value


def _normalise_header(header: str) -> str:
    return re.sub(r'[^a-z0-9]', '_', (header or "").lower())


def parse_csv_text(text: str) -> Tuple[List[str], List[List[str]]]:
    """
    Split CSV text into its header and data rows.

    Blank lines are skipped and quoted fields may contain commas.
    """
    lines = [line for line in (text or "").splitlines() if line.strip()]
    if len(lines) < 2:
        raise ImportValidationError("CSV must have a header row and at least one data row.")

    reader = csv.reader(io.StringIO("\n".join(lines)))
    parsed = [[clean_value(cell) for cell in row] for row in reader]
    return parsed[0], parsed[1:]


def auto_detect_mapping(headers: List[str]) -> Dict[str, str]:
    """Map canonical fields to the source headers that best match them."""
    normalised = [_normalise_header(h) for h in headers]
    mapping: Dict[str, str] = {}
    claimed = set()

    # Columns already named after an allowed field map to it directly
    for i, header in enumerate(normalised):
        if header in ALLOWED_KEYS and header not in mapping:
            mapping[header] = headers[i]
            claimed.add(i)

    for field_name, patterns in MAPPING_RULES.items():
        if field_name in mapping:
            continue
        for i, header in enumerate(normalised):
            if i in claimed or header in ALLOWED_KEYS:
                continue
            if any(p in header for p in patterns):
                mapping[field_name] = headers[i]
                claimed.add(i)
                break

    return mapping


def _parse_tags(value: str) -> List[str]:
    try:
        parsed = json.loads(value)
        if isinstance(parsed, list):
            return [str(t).strip() for t in parsed if str(t).strip()]
    except (json.JSONDecodeError, TypeError):
        pass
    return [t.strip() for t in value.split(",") if t.strip()]


def derive_unit_price(item: Dict[str, Any]) -> Dict[str, Any]:
    if item.get("unit_price") is None:
        for key in ("selling_price", "price_per_unit", "cost_price"):
            if isinstance(item.get(key), (int, float)):
                item["unit_price"] = item[key]
                break
        else:
            item["unit_price"] = 0.0
    return item


def row_to_item(headers: List[str], row: List[str], mapping: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Build an inventory item from one CSV row, keeping allow-listed fields only."""
    mapping = mapping if mapping is not None else auto_detect_mapping(headers)
    index_by_header = {h: i for i, h in enumerate(headers)}
    item: Dict[str, Any] = {}

    for field_name, header in mapping.items():
        if field_name not in ALLOWED_KEYS:
            continue
        idx = index_by_header.get(header)
        if idx is None or idx >= len(row):
            continue
        raw = row[idx]
        if raw is None or raw == "":
            continue

        if field_name in NUMERIC_KEYS:
            number = safe_float(raw)
            if number is None:
                logger.debug(f"Dropping non-numeric {field_name}={raw!r}")
                continue
            item[field_name] = number
        elif field_name == "active":
            item[field_name] = str(raw).strip().lower() in TRUE_VALUES
        elif field_name == "tags":
            tags = _parse_tags(raw)
            if tags:
                item[field_name] = tags
        else:
            item[field_name] = raw

    return derive_unit_price(item)


def validate_item(item: Dict[str, Any]):
    if not item.get("name") and not item.get("sku"):
        raise ImportValidationError("Missing name or sku")


def items_from_csv(text: str, mapping: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
    headers, rows = parse_csv_text(text)
    mapping = mapping or auto_detect_mapping(headers)
    logger.info(f"CSV has {len(rows)} rows; column mapping {mapping}")
    return [row_to_item(headers, row, mapping) for row in rows]


def make_sku_generator(prefix: str = "INV"):
    """SKU generator for the batch processor. Rows without a name get no SKU and fail validation."""
    def _generate(item: Dict[str, Any]) -> Optional[str]:
        if not item.get("name"):
            return None
        return generate_sku(prefix)
    return _generate


def _existing_skus(db_manager: DatabaseManager, user_id: str, skus: List[str]) -> set:
    if not skus:
        return set()
    placeholders = ", ".join(["?"] * len(skus))
    cursor = db_manager.execute_query(
        f"SELECT sku FROM {TABLE} WHERE user_id = ? AND sku IN ({placeholders})",
        (user_id, *skus),
    )
    return {row["sku"] for row in cursor.fetchall()}


def _to_record(item: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    record = {k: v for k, v in item.items() if k in ALLOWED_KEYS}
    record["user_id"] = user_id
    if "tags" in record:
        record["tags"] = json.dumps(record["tags"])
    if "active" in record:
        record["active"] = 1 if record["active"] else 0
    return record


def make_upsert_processor(db_manager: DatabaseManager, user_id: str):
    """
    Chunk processor for BatchImportProcessor.

    Invalid rows are reported individually; the valid rest of the chunk is written in
    a single upsert. A DatabaseError from that upsert propagates so the whole chunk
    is marked as failed.
    """
    def process_chunk(chunk: List[Dict[str, Any]]) -> List[RowOutcome]:
        outcomes: List[Optional[RowOutcome]] = [None] * len(chunk)
        records = []
        record_positions = []

        for i, item in enumerate(chunk):
            try:
                validate_item(item)
            except ImportValidationError as e:
                outcomes[i] = RowOutcome(RowStatus.ERROR, e.message)
                continue
            records.append(_to_record(item, user_id))
            record_positions.append(i)

        existing = _existing_skus(db_manager, user_id, [r["sku"] for r in records if r.get("sku")])
        for record in records:
            # New items start active; updates leave the stored flag alone unless given
            if "active" not in record and record.get("sku") not in existing:
                record["active"] = 1

        db_manager.upsert_items(TABLE, records, conflict_columns=("user_id", "sku"))

        seen = set(existing)
        for pos, record in zip(record_positions, records):
            sku = record.get("sku")
            if sku and sku in seen:
                outcomes[pos] = RowOutcome(RowStatus.UPDATED)
            else:
                outcomes[pos] = RowOutcome(RowStatus.SUCCESS)
                if sku:
                    seen.add(sku)

        return outcomes

    return process_chunk


def export_results_workbook(results: List[ImportResultRow]) -> Workbook:
    """Per-row results as a workbook for download."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Import Results"
    ws.append(["Row", "Status", "SKU", "Name", "Message"])
    for r in results:
        ws.append([r.row, r.status.value, r.sku or "", r.name or "", r.message or ""])

    for col, width in zip("ABCDE", (8, 10, 24, 40, 60)):
        ws.column_dimensions[col].width = width
    ws.freeze_panes = "A2"
    return wb
