import json
from services.config_service import ConfigManager


def test_project_config_loads(config_manager):
    assert config_manager.load_error is None
    assert config_manager.get("inventory_import.sku_prefix") == "INV"
    assert config_manager.get("functions", "timeout") == 60


def test_defaults_fill_missing_sections(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"functions": {"base_url": "https://fn.example.com"}}))

    manager = ConfigManager(str(path))

    assert manager.get("functions.base_url") == "https://fn.example.com"
    assert manager.get("functions.timeout") == 60
    assert manager.get("database") == "curtain_data.db"
    assert manager.get("no.such.key", default="x") == "x"


def test_invalid_json_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")

    manager = ConfigManager(str(path))

    assert manager.load_error
    assert manager.get("inventory_import.sku_prefix") == "INV"


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("FUNCTIONS_BASE_URL", "https://env.example.com")

    manager = ConfigManager(str(tmp_path / "missing.json"))

    assert manager.get("functions.base_url") == "https://env.example.com"

