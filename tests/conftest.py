from __future__ import annotations

import pytest

PEOPLE_CSV = "Name,Age\nJohn,30\nAlice,25\nJohn,25\n"


@pytest.fixture
def people_csv(tmp_path):
    path = tmp_path / "people.csv"
    path.write_text(PEOPLE_CSV, encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _isolate_config_env(monkeypatch):
    monkeypatch.delenv("CSVBENCH_CONFIG_PATH", raising=False)
