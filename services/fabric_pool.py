# services/fabric_pool.py
"""
Fabric Pool Ledger

Tracks, per project and per fabric, how much fabric has been ordered and how much
each surface (window/opening) actually consumes, so later surfaces can draw on the
leftover instead of ordering more.

The pool lives on the project record as one JSON map (fabric_id -> entry) and is
read, modified and written back whole on every change. Last write wins.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from services.database import DatabaseManager
from services.exceptions import FabricPoolError, ProjectNotFoundError

logger = logging.getLogger(__name__)

# Tolerance for float noise when checking the pool is not overdrawn
EPSILON = 1e-9

# Ledger totals are kept to this many decimal places
PRECISION = 9


def _num(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SurfaceUsage:
    surface_id: str
    surface_name: str = ""
    amount_ordered: float = 0.0         # fabric bought for this surface
    amount_used: float = 0.0            # fabric this surface consumes
    leftover_generated: float = 0.0
    used_from_pool: float = 0.0         # part of amount_used drawn from other surfaces' leftover
    orientation: str = "vertical"
    widths_ordered: int = 0
    timestamp: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SurfaceUsage":
        return cls(
            surface_id=str(data.get("surface_id", "")),
            surface_name=data.get("surface_name") or "",
            amount_ordered=_num(data.get("amount_ordered")),
            amount_used=_num(data.get("amount_used")),
            leftover_generated=_num(data.get("leftover_generated")),
            used_from_pool=_num(data.get("used_from_pool")),
            orientation=data.get("orientation") or "vertical",
            widths_ordered=int(_num(data.get("widths_ordered"))),
            timestamp=data.get("timestamp") or "",
        )


@dataclass
class FabricPoolEntry:
    fabric_id: str
    fabric_name: str = ""
    fabric_width: float = 0.0
    unit: str = "m"
    cost_per_unit: float = 0.0
    surfaces: List[SurfaceUsage] = field(default_factory=list)

    # Totals are always derived from the surface list.
    @property
    def total_ordered(self) -> float:
        return round(sum(s.amount_ordered for s in self.surfaces), PRECISION)

    @property
    def total_used(self) -> float:
        return round(sum(s.amount_used for s in self.surfaces), PRECISION)

    @property
    def available_leftover(self) -> float:
        return self.total_ordered - self.total_used

    def upsert_surface(self, usage: SurfaceUsage) -> None:
        """Replace the usage with the same surface_id, or append it."""
        for i, existing in enumerate(self.surfaces):
            if existing.surface_id == usage.surface_id:
                self.surfaces[i] = usage
                return
        self.surfaces.append(usage)

    def remove_surface(self, surface_id: str) -> bool:
        before = len(self.surfaces)
        self.surfaces = [s for s in self.surfaces if s.surface_id != surface_id]
        return len(self.surfaces) != before

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fabric_id": self.fabric_id,
            "fabric_name": self.fabric_name,
            "fabric_width": self.fabric_width,
            "unit": self.unit,
            "cost_per_unit": self.cost_per_unit,
            "total_ordered": self.total_ordered,
            "total_used": self.total_used,
            "available_leftover": self.available_leftover,
            "surfaces": [s.to_dict() for s in self.surfaces],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FabricPoolEntry":
        # Stored totals are ignored; they are recomputed from the surfaces.
        return cls(
            fabric_id=str(data.get("fabric_id", "")),
            fabric_name=data.get("fabric_name") or "",
            fabric_width=_num(data.get("fabric_width")),
            unit=data.get("unit") or "m",
            cost_per_unit=_num(data.get("cost_per_unit")),
            surfaces=[SurfaceUsage.from_dict(s) for s in data.get("surfaces") or []],
        )


@dataclass(frozen=True)
class FabricNeeds:
    available_from_pool: float
    used_from_pool: float
    needs_ordering: float
    cost_savings: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


# ========== Pure calculation ==========

def calculate_fabric_needs(
        fabric_id: str,
        required_amount: float,
        pools: Dict[str, FabricPoolEntry],
        cost_per_unit: float = 0.0,
) -> FabricNeeds:
    """
    Work out how much of a requirement the pool's leftover can cover.

    Nothing is recorded; the caller saves the draw with ``update_pool`` afterwards.
    """
    required = _num(required_amount)
    if required < 0:
        raise FabricPoolError(f"Required amount must not be negative (got {required_amount})")

    entry = pools.get(str(fabric_id))
    available = max(0.0, entry.available_leftover) if entry else 0.0

    if available >= required:
        used, order = required, 0.0
    elif available > 0:
        used, order = available, required - available
    else:
        used, order = 0.0, required

    return FabricNeeds(
        available_from_pool=available,
        used_from_pool=used,
        needs_ordering=order,
        cost_savings=used * _num(cost_per_unit),
    )


def summarise_pool(pools: Dict[str, FabricPoolEntry]) -> Dict[str, float]:
    """Project-level totals, including what the leftover stock is worth."""
    return {
        "fabrics": len(pools),
        "total_ordered": sum(e.total_ordered for e in pools.values()),
        "total_used": sum(e.total_used for e in pools.values()),
        "available_leftover": sum(e.available_leftover for e in pools.values()),
        "leftover_value": sum(e.available_leftover * e.cost_per_unit for e in pools.values()),
    }


# ========== Persistence ==========

def create_project(db_manager: DatabaseManager, project_id: str, name: str = "") -> None:
    db_manager.execute_query(
        "INSERT OR IGNORE INTO projects (id, name, fabric_pool) VALUES (?, ?, ?)",
        (str(project_id), name, "{}"),
        True,
    )


def get_project_pool(db_manager: DatabaseManager, project_id: str) -> Dict[str, FabricPoolEntry]:
    row = db_manager.execute_query(
        "SELECT fabric_pool FROM projects WHERE id = ?", (str(project_id),)
    ).fetchone()
    if row is None:
        raise ProjectNotFoundError(f"Project {project_id} not found")

    try:
        raw = json.loads(row["fabric_pool"] or "{}")
    except (json.JSONDecodeError, TypeError):
        logger.error(f"Unreadable fabric pool on project {project_id}; treating it as empty")
        raw = {}

    return {str(fid): FabricPoolEntry.from_dict({**data, "fabric_id": fid}) for fid, data in raw.items()}


def save_project_pool(db_manager: DatabaseManager, project_id: str, pools: Dict[str, FabricPoolEntry]) -> None:
    payload = json.dumps({fid: entry.to_dict() for fid, entry in pools.items()})
    db_manager.execute_query(
        "UPDATE projects SET fabric_pool = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
        (payload, str(project_id)),
        True,
    )


# ========== Mutations ==========

def update_pool(
        db_manager: DatabaseManager,
        project_id: str,
        fabric_id: str,
        surface_id: str,
        *,
        surface_name: str = "",
        amount_ordered: float = 0.0,
        amount_used: float = 0.0,
        leftover_generated: float = 0.0,
        used_from_pool: float = 0.0,
        orientation: str = "vertical",
        widths_ordered: int = 0,
        fabric_name: Optional[str] = None,
        fabric_width: Optional[float] = None,
        unit: Optional[str] = None,
        cost_per_unit: Optional[float] = None,
) -> FabricPoolEntry:
    """
    Save one surface's fabric usage into the project's pool.

    The surface's previous record (if any) is replaced, so saving the same values
    twice leaves the totals unchanged.
    """
    for label, value in (("amount_ordered", amount_ordered), ("amount_used", amount_used),
                         ("leftover_generated", leftover_generated), ("used_from_pool", used_from_pool)):
        if _num(value) < 0:
            raise FabricPoolError(f"{label} must not be negative (got {value})")

    fabric_id = str(fabric_id)
    pools = get_project_pool(db_manager, project_id)

    entry = pools.get(fabric_id)
    if entry is None:
        entry = FabricPoolEntry(fabric_id=fabric_id)
        logger.info(f"Creating fabric pool entry {fabric_id} on project {project_id}")

    if fabric_name is not None:
        entry.fabric_name = fabric_name
    if fabric_width is not None:
        entry.fabric_width = _num(fabric_width)
    if unit:
        entry.unit = unit
    if cost_per_unit is not None:
        entry.cost_per_unit = _num(cost_per_unit)

    entry.upsert_surface(SurfaceUsage(
        surface_id=str(surface_id),
        surface_name=surface_name or "",
        amount_ordered=_num(amount_ordered),
        amount_used=_num(amount_used),
        leftover_generated=_num(leftover_generated),
        used_from_pool=_num(used_from_pool),
        orientation=orientation or "vertical",
        widths_ordered=int(_num(widths_ordered)),
        timestamp=_now_iso(),
    ))

    if entry.available_leftover < -EPSILON:
        raise FabricPoolError(
            f"Fabric {fabric_id} would be overdrawn: {entry.total_used:g} used "
            f"but only {entry.total_ordered:g} ordered"
        )

    pools[fabric_id] = entry
    save_project_pool(db_manager, project_id, pools)
    logger.debug(
        f"Pool {project_id}/{fabric_id}: ordered={entry.total_ordered:g} "
        f"used={entry.total_used:g} leftover={entry.available_leftover:g}"
    )
    return entry


def remove_surface_from_pool(
        db_manager: DatabaseManager,
        project_id: str,
        surface_id: str,
) -> Dict[str, FabricPoolEntry]:
    """Drop a deleted surface from every fabric entry; entries left empty go too."""
    pools = get_project_pool(db_manager, project_id)
    surface_id = str(surface_id)

    changed = False
    for fabric_id in list(pools):
        entry = pools[fabric_id]
        if entry.remove_surface(surface_id):
            changed = True
            if entry.available_leftover < -EPSILON:
                # Other surfaces drew on fabric this one ordered
                drawing = [s.surface_id for s in entry.surfaces if s.used_from_pool > 0]
                raise FabricPoolError(
                    f"Fabric {fabric_id} would be overdrawn without surface {surface_id}; "
                    f"update surfaces {', '.join(drawing)} first"
                )
            if not entry.surfaces:
                logger.info(f"Removing empty fabric pool entry {fabric_id} from project {project_id}")
                del pools[fabric_id]

    if changed:
        save_project_pool(db_manager, project_id, pools)
    return pools
