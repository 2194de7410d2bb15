from __future__ import annotations

import pytest

from config_loader import get_default_config


@pytest.fixture
def config(tmp_path):
    cfg = get_default_config()
    cfg["auto_discover"] = False
    cfg["polling_interval_seconds"] = 3600
    cfg["api"]["enabled"] = False
    cfg["registry"]["cache_file"] = str(tmp_path / "accessories.json")
    return cfg
