# services/grid_resolver.py
"""
Pricing grid resolution: which of a user's grids prices a given product.

Rules route a (product type, system type, price group) combination to a grid. A rule
attribute left empty matches anything. Among matching rules the highest priority
wins; on equal priority the rule with more attributes set wins, then the older rule.
No matching rule is a normal outcome and resolves to None.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

from services.database import DatabaseManager
from services.exceptions import PricingGridError
from services.pricing_grids import normalize_grid_data, validate_grid

logger = logging.getLogger(__name__)


def _norm(s: Any) -> str:
    return ("" if s is None else str(s)).strip()


@dataclass(frozen=True)
class GridRule:
    id: Optional[int]
    grid_id: int
    product_type: Optional[str] = None
    system_type: Optional[str] = None
    price_group: Optional[str] = None
    priority: int = 0

    @property
    def specificity(self) -> int:
        return sum(1 for v in (self.product_type, self.system_type, self.price_group) if _norm(v))

    def matches(self, product_type: str, system_type: Optional[str], price_group: Optional[str]) -> bool:
        if _norm(self.product_type) and _norm(self.product_type) != _norm(product_type):
            return False
        if _norm(self.system_type) and _norm(self.system_type).lower() != _norm(system_type).lower():
            return False
        if _norm(self.price_group) and _norm(self.price_group).lower() != _norm(price_group).lower():
            return False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GridResolution:
    grid_id: int
    grid_name: str
    grid_code: Optional[str]
    matched_rule: GridRule
    grid_data: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grid_id": self.grid_id,
            "grid_name": self.grid_name,
            "grid_code": self.grid_code,
            "matched_rule": self.matched_rule.to_dict(),
            "grid_data": self.grid_data,
        }


def select_rule(rules: List[GridRule], product_type: str, system_type: Optional[str] = None,
                price_group: Optional[str] = None) -> Optional[GridRule]:
    candidates = [r for r in rules if r.matches(product_type, system_type, price_group)]
    if not candidates:
        return None
    return max(
        candidates,
        key=lambda r: (r.priority, r.specificity, -(r.id if r.id is not None else 0)),
    )


def load_rules(db_manager: DatabaseManager, user_id: str) -> List[Dict[str, Any]]:
    """Active rules for the user, each joined with its (active) grid."""
    query = """
        SELECT
            r.id, r.grid_id, r.product_type, r.system_type, r.price_group, r.priority,
            g.name AS grid_name, g.grid_code, g.grid_data
        FROM pricing_grid_rules r
        INNER JOIN pricing_grids g ON g.id = r.grid_id
        WHERE r.user_id = ? AND r.active = 1 AND g.active = 1
        ORDER BY r.id
    """
    return [dict(row) for row in db_manager.execute_query(query, (user_id,)).fetchall()]


def _rule_from_row(row: Dict[str, Any]) -> GridRule:
    return GridRule(
        id=row["id"],
        grid_id=row["grid_id"],
        product_type=row["product_type"],
        system_type=row["system_type"],
        price_group=row["price_group"],
        priority=row["priority"] or 0,
    )


def resolve_grid_for_product(
        db_manager: DatabaseManager,
        product_type: str,
        system_type: Optional[str] = None,
        fabric_price_group: Optional[str] = None,
        user_id: str = None,
) -> Optional[GridResolution]:
    if not _norm(product_type):
        raise PricingGridError("A product type is required to resolve a pricing grid")

    rows = load_rules(db_manager, user_id)
    rules = {row["id"]: (_rule_from_row(row), row) for row in rows}
    rule = select_rule([r for r, _ in rules.values()], product_type, system_type, fabric_price_group)
    if rule is None:
        logger.info(
            f"No pricing grid for product_type={product_type!r} system_type={system_type!r} "
            f"price_group={fabric_price_group!r}"
        )
        return None

    row = rules[rule.id][1]
    try:
        grid_data = json.loads(row["grid_data"]) if isinstance(row["grid_data"], str) else row["grid_data"]
    except json.JSONDecodeError:
        logger.error(f"Grid {row['grid_id']} has unreadable grid data")
        grid_data = {}

    logger.debug(f"Resolved grid {row['grid_code'] or row['grid_id']} via rule {rule.id} (priority {rule.priority})")
    return GridResolution(
        grid_id=row["grid_id"],
        grid_name=row["grid_name"],
        grid_code=row["grid_code"],
        matched_rule=rule,
        grid_data=grid_data or {},
    )


def get_user_grids(db_manager: DatabaseManager, user_id: str) -> List[Dict[str, Any]]:
    query = """
        SELECT id, name, grid_code, product_type, price_group
        FROM pricing_grids
        WHERE user_id = ? AND active = 1
        ORDER BY id
    """
    return [dict(row) for row in db_manager.execute_query(query, (user_id,)).fetchall()]


def diagnose_grid_resolution(
        db_manager: DatabaseManager,
        product_type: str,
        price_group: Optional[str] = None,
        system_type: Optional[str] = None,
        user_id: str = None,
) -> Dict[str, Any]:
    """Try to resolve, and when nothing matches, point at the likely reason."""
    resolution = resolve_grid_for_product(db_manager, product_type, system_type, price_group, user_id)
    grids = get_user_grids(db_manager, user_id)
    issues: List[str] = []

    if resolution is None:
        group = _norm(price_group).lower()
        same_type = [g for g in grids if _norm(g["product_type"]) == _norm(product_type)]
        same_group = [g for g in grids if group and _norm(g["price_group"]).lower() == group]

        if not same_type:
            issues.append(f'No grids exist for product type "{product_type}"')
        elif group and not same_group:
            issues.append(f'No grids exist with price group "{price_group}"')
        else:
            issues.append("No rule matches the exact combination of product type, system type and price group")
            partial = [g for g in grids if g in same_type or g in same_group]
            if partial:
                issues.append(f"Found {len(partial)} grids with partial matches")

    return {
        "success": resolution is not None,
        "grid_id": resolution.grid_id if resolution else None,
        "grid_name": resolution.grid_name if resolution else None,
        "grid_code": resolution.grid_code if resolution else None,
        "match_details": (
            f"Matched rule {resolution.matched_rule.id} (priority {resolution.matched_rule.priority})"
            if resolution else None
        ),
        "search_params": {
            "product_type": product_type,
            "system_type": system_type,
            "price_group": price_group,
        },
        "available_grids": grids,
        "possible_issues": issues,
    }


# ========== Grid and rule records ==========

def create_grid(db_manager: DatabaseManager, user_id: str, name: str, grid_data: Any,
                grid_code: Optional[str] = None, product_type: Optional[str] = None,
                price_group: Optional[str] = None) -> int:
    grid = normalize_grid_data(grid_data)
    if grid is None:
        raise PricingGridError("Could not read pricing grid data")
    valid, errors = validate_grid(grid)
    if not valid:
        raise PricingGridError("; ".join(errors))

    return db_manager.insert_item("pricing_grids", {
        "user_id": user_id,
        "name": name,
        "grid_code": grid_code,
        "product_type": product_type,
        "price_group": _norm(price_group).upper() or None,
        "grid_data": json.dumps(grid.to_dict()),
        "active": 1,
    })


def create_rule(db_manager: DatabaseManager, user_id: str, grid_id: int, product_type: Optional[str] = None,
                system_type: Optional[str] = None, price_group: Optional[str] = None, priority: int = 0) -> int:
    return db_manager.insert_item("pricing_grid_rules", {
        "user_id": user_id,
        "grid_id": grid_id,
        "product_type": _norm(product_type) or None,
        "system_type": _norm(system_type) or None,
        "price_group": _norm(price_group) or None,
        "priority": int(priority or 0),
        "active": 1,
    })
