import json
import os

from smartirrigation.config import ClientSettings, resolve_base_url
from smartirrigation.storage import JsonFileKeyValueStore


class TestJsonFileKeyValueStore:
    def test_values_survive_a_new_instance(self, tmp_path):
        path = str(tmp_path / "state" / "kv.json")
        first = JsonFileKeyValueStore(path)
        first.set("auth_token", "a.b.c")
        first.set("saved_latitude", "39.92")
        first.remove("saved_latitude")

        second = JsonFileKeyValueStore(path)
        assert second.get("auth_token") == "a.b.c"
        assert second.get("saved_latitude") is None

    def test_missing_file_is_empty(self, tmp_path):
        assert JsonFileKeyValueStore(str(tmp_path / "nope.json")).get("x") is None

    def test_corrupted_file_is_set_aside(self, tmp_path):
        path = tmp_path / "kv.json"
        path.write_text("{broken", encoding="utf-8")

        store = JsonFileKeyValueStore(str(path))

        assert store.get("auth_token") is None
        assert not path.exists()
        assert any(name.startswith("kv.json.corrupt.") for name in os.listdir(tmp_path))

    def test_non_string_values_are_ignored(self, tmp_path):
        path = tmp_path / "kv.json"
        path.write_text(json.dumps({"a": "1", "b": 2}), encoding="utf-8")
        store = JsonFileKeyValueStore(str(path))
        assert store.get("a") == "1"
        assert store.get("b") is None


class TestResolveBaseUrl:
    def test_localhost_targets_backend_port(self):
        settings = ClientSettings(origin="http://localhost:5173")
        assert resolve_base_url(settings) == "http://localhost:8080/api"

    def test_loopback_ip(self):
        settings = ClientSettings(origin="http://127.0.0.1:3000", backend_port=9000)
        assert resolve_base_url(settings) == "http://localhost:9000/api"

    def test_remote_origin_uses_relative_api_path(self):
        settings = ClientSettings(origin="https://garden.example.com/dashboard?x=1")
        assert resolve_base_url(settings) == "https://garden.example.com/api"

    def test_prefix_is_normalised(self):
        settings = ClientSettings(origin="https://garden.example.com", api_prefix="v2/")
        assert resolve_base_url(settings) == "https://garden.example.com/v2"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("IRRIGATION_ORIGIN", "https://farm.example.org")
        monkeypatch.setenv("IRRIGATION_STATUS_INTERVAL", "5")
        settings = ClientSettings()
        assert settings.status_interval == 5
        assert resolve_base_url(settings) == "https://farm.example.org/api"
