"""
Tests for the server extension's request parsing and configuration.
"""

from types import SimpleNamespace

import pytest

from cellgather_server.handlers import DEFAULT_GATHER_SETTINGS, _cell_from_json, _load_gather_config


class TestCellFromJson:

    def test_full_payload(self):
        cell = _cell_from_json({
            "id": "abc",
            "text": "x = 1\n\n",
            "execution_count": 3,
            "execution_event_id": "evt-3",
            "persistent_id": "abc",
            "has_error": True,
        })
        assert cell.text == "x = 1"
        assert cell.execution_event_id == "evt-3"
        assert cell.has_error

    def test_source_list_is_joined(self):
        cell = _cell_from_json({"id": "abc", "source": ["a = 1\n", "b = 2\n"], "execution_count": 1})
        assert cell.text == "a = 1\nb = 2"
        assert cell.execution_event_id == "abc"

    @pytest.mark.parametrize("payload", [
        None,
        {"execution_count": 1, "text": "x"},
        {"id": "abc", "text": "x"},
        {"id": "abc", "text": "x", "execution_count": "1"},
        {"id": "abc", "text": "x", "execution_count": True},
    ])
    def test_invalid_payloads(self, payload):
        with pytest.raises(ValueError):
            _cell_from_json(payload)


class TestLoadGatherConfig:

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in ("CELLGATHER_RULES", "CELLGATHER_PURE_CALLS",
                     "CELLGATHER_CELL_MARKER", "CELLGATHER_HEADER"):
            monkeypatch.delenv(name, raising=False)

    def test_defaults(self):
        assert _load_gather_config(SimpleNamespace(config={})) == DEFAULT_GATHER_SETTINGS

    def test_server_config_section(self):
        app = SimpleNamespace(config={"CellGather": {"cell_marker": "# In[ ]:", "rules_path": None}})
        cfg = _load_gather_config(app)
        assert cfg["cell_marker"] == "# In[ ]:"
        assert cfg["rules_path"] is None

    def test_environment_overrides_config(self, monkeypatch):
        monkeypatch.setenv("CELLGATHER_RULES", "/etc/rules.yaml")
        monkeypatch.setenv("CELLGATHER_PURE_CALLS", "yes")
        monkeypatch.setenv("CELLGATHER_HEADER", "off")
        app = SimpleNamespace(config={"CellGather": {"rules_path": "local.yaml", "include_header": True}})
        cfg = _load_gather_config(app)
        assert cfg["rules_path"] == "/etc/rules.yaml"
        assert cfg["include_pure_calls"] is True
        assert cfg["include_header"] is False
