"""Connector configuration and registry tests."""

import pytest

from connectors import ConnectorConfig, create_connector, list_available_connectors
from connectors.config import CONNECTOR_ENV, load_connector_config, load_env_file, required_variables
from connectors.errors import ConfigError


class TestLoadConnectorConfig:
    def test_all_required_present(self):
        config = load_connector_config("groove", environ={"GROOVE_API_TOKEN": " tok "})
        assert config.connector_type == "groove"
        assert config.get("GROOVE_API_TOKEN") == "tok"

    def test_every_missing_variable_named(self):
        with pytest.raises(ConfigError) as exc_info:
            load_connector_config("zendesk", environ={"ZENDESK_SUBDOMAIN": "acme", "ZENDESK_TOKEN": "  "})
        assert exc_info.value.missing == ["ZENDESK_EMAIL", "ZENDESK_TOKEN"]
        assert "ZENDESK_EMAIL" in str(exc_info.value)

    def test_optional_settings(self):
        env = {
            "KAYAKO_CLASSIC_DOMAIN": "help.example.test",
            "KAYAKO_CLASSIC_API_KEY": "k",
            "KAYAKO_CLASSIC_SECRET_KEY": "s",
            "KAYAKO_CLASSIC_DEPARTMENT_ID": "4",
        }
        config = load_connector_config("kayako-classic", environ=env)
        assert config.settings == {"KAYAKO_CLASSIC_DEPARTMENT_ID": "4"}
        assert config.get("MISSING", "x") == "x"

    def test_unknown_connector(self):
        with pytest.raises(ConfigError):
            required_variables("nowhere")

    def test_env_file_loaded(self, tmp_path, monkeypatch):
        # setenv first so the variable dotenv loads is removed again on teardown
        monkeypatch.setenv("HELPCRUNCH_API_KEY", "placeholder")
        monkeypatch.delenv("HELPCRUNCH_API_KEY")
        env_file = tmp_path / ".env"
        env_file.write_text("HELPCRUNCH_API_KEY=from-file\n", encoding="utf-8")

        assert load_env_file(env_file) is True
        assert load_connector_config("helpcrunch").get("HELPCRUNCH_API_KEY") == "from-file"

    def test_missing_env_file(self, tmp_path):
        assert load_env_file(tmp_path / "nope.env") is False


class TestRegistry:
    def test_every_configured_connector_registered(self):
        assert sorted(list_available_connectors()) == sorted(CONNECTOR_ENV)

    def test_unknown_connector_type(self):
        with pytest.raises(ConfigError):
            create_connector(ConnectorConfig(connector_type="nowhere"))

    def test_registry_sets_name(self):
        connector = create_connector(ConnectorConfig("groove", {"GROOVE_API_TOKEN": "t"}))
        assert connector.name == "groove"
        assert connector.supports_notes is True

    def test_helpcrunch_has_no_notes(self):
        connector = create_connector(ConnectorConfig("helpcrunch", {"HELPCRUNCH_API_KEY": "t"}))
        assert connector.supports_notes is False
