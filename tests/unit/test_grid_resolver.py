import pytest
from services.exceptions import PricingGridError
from services.grid_resolver import (
    GridRule,
    create_grid,
    create_rule,
    diagnose_grid_resolution,
    resolve_grid_for_product,
    select_rule,
)


GRID = {"width_columns": [60, 90], "drop_rows": [{"drop": 100, "prices": [50, 60]}]}


@pytest.fixture
def grids(get_db_manager):
    db = get_db_manager
    generic = create_grid(db, "u1", "Roller generic", GRID, grid_code="RB-GEN", product_type="roller_blind")
    cassette = create_grid(db, "u1", "Roller cassette B", GRID, grid_code="RB-CAS-B",
                           product_type="roller_blind", price_group="b")
    create_rule(db, "u1", generic, product_type="roller_blind", priority=1)
    create_rule(db, "u1", cassette, product_type="roller_blind", system_type="Cassette",
                price_group="B", priority=5)
    return db, generic, cassette


def test_higher_priority_rule_wins(grids):
    db, generic, cassette = grids

    resolution = resolve_grid_for_product(db, "roller_blind", "Cassette", "B", user_id="u1")

    assert resolution.grid_id == cassette
    assert resolution.grid_code == "RB-CAS-B"
    assert resolution.matched_rule.priority == 5
    assert resolution.grid_data["width_columns"] == [60, 90]


def test_wildcard_rule_catches_the_rest(grids):
    db, generic, cassette = grids

    resolution = resolve_grid_for_product(db, "roller_blind", "Open Roll", "A", user_id="u1")

    assert resolution.grid_id == generic


def test_system_type_and_price_group_match_case_insensitively(grids):
    db, generic, cassette = grids

    resolution = resolve_grid_for_product(db, "roller_blind", " cassette ", "b", user_id="u1")

    assert resolution.grid_id == cassette


def test_no_match_is_none(grids):
    db, _, _ = grids

    assert resolve_grid_for_product(db, "venetian", "Cassette", "B", user_id="u1") is None


def test_rules_are_per_user(grids):
    db, _, _ = grids

    assert resolve_grid_for_product(db, "roller_blind", "Cassette", "B", user_id="someone-else") is None


def test_inactive_grid_is_skipped(grids):
    db, generic, cassette = grids
    db.execute_query("UPDATE pricing_grids SET active = 0 WHERE id = ?", (cassette,), True)

    resolution = resolve_grid_for_product(db, "roller_blind", "Cassette", "B", user_id="u1")

    assert resolution.grid_id == generic


def test_product_type_is_required(get_db_manager):
    with pytest.raises(PricingGridError):
        resolve_grid_for_product(get_db_manager, "", user_id="u1")


def test_equal_priority_prefers_more_specific_rule():
    rules = [
        GridRule(id=1, grid_id=10, product_type="roller_blind", priority=3),
        GridRule(id=2, grid_id=20, product_type="roller_blind", price_group="B", priority=3),
    ]
    assert select_rule(rules, "roller_blind", None, "B").grid_id == 20


def test_equal_priority_and_specificity_prefers_older_rule():
    rules = [
        GridRule(id=7, grid_id=70, product_type="roller_blind"),
        GridRule(id=3, grid_id=30, product_type="roller_blind"),
    ]
    assert select_rule(rules, "roller_blind").grid_id == 30


def test_rule_attribute_set_but_query_missing_does_not_match():
    rules = [GridRule(id=1, grid_id=10, product_type="roller_blind", system_type="Cassette")]
    assert select_rule(rules, "roller_blind", None, None) is None


def test_create_grid_rejects_bad_data(get_db_manager):
    with pytest.raises(PricingGridError):
        create_grid(get_db_manager, "u1", "Broken", {"nothing": True})
    with pytest.raises(PricingGridError, match="prices but expected"):
        create_grid(get_db_manager, "u1", "Ragged",
                    {"widths": [60, 90], "heights": [100], "prices": [[1]]})


def test_diagnose_success(grids):
    db, _, cassette = grids

    report = diagnose_grid_resolution(db, "roller_blind", "B", "Cassette", user_id="u1")

    assert report["success"]
    assert report["grid_id"] == cassette
    assert report["possible_issues"] == []
    assert len(report["available_grids"]) == 2


def test_diagnose_unknown_product_type(grids):
    db, _, _ = grids

    report = diagnose_grid_resolution(db, "venetian", "B", user_id="u1")

    assert not report["success"]
    assert report["possible_issues"] == ['No grids exist for product type "venetian"']


def test_diagnose_partial_matches(get_db_manager):
    db = get_db_manager
    grid = create_grid(db, "u1", "Cassette B", GRID, product_type="roller_blind", price_group="B")
    create_rule(db, "u1", grid, product_type="roller_blind", system_type="Cassette", price_group="B")

    report = diagnose_grid_resolution(db, "roller_blind", "B", "Open Roll", user_id="u1")

    assert not report["success"]
    assert "Found 1 grids with partial matches" in report["possible_issues"]
