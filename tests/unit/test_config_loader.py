"""
Unit tests for configuration loading
"""

import pytest

from src.config.config_loader import load_config, load_rules_file


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ('AUTOMATIONS_CONFIG', 'DATABASE_URL', 'LOG_LEVEL',
                 'AUTOMATIONS_TIMEZONE', 'AUTOMATIONS_DEFAULT_CURRENCY'):
        monkeypatch.delenv(name, raising=False)
    # keep a developer .env out of the tests
    monkeypatch.setattr('src.config.config_loader.load_dotenv', lambda *args, **kwargs: False)


class TestLoadConfig:

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")

        assert config['locale']['timezone'] == 'America/Mexico_City'
        assert config['executor']['max_retries'] == 2
        assert config['calendar']['meal_start_times']['lunch'] == '14:00'
        assert config['rules'] == []

    def test_yaml_is_merged_into_defaults(self, tmp_path):
        path = tmp_path / "automations.yaml"
        path.write_text(
            "locale:\n"
            "  default_currency: USD\n"
            "engine:\n"
            "  unit_timeout_seconds: 5\n"
            "instances:\n"
            "  ventas:\n"
            "    owner_jid: '5215511111111@s.whatsapp.net'\n",
            encoding='utf-8'
        )

        config = load_config(path)
        assert config['locale']['default_currency'] == 'USD'
        assert config['locale']['language'] == 'es'
        assert config['engine'] == {'unit_timeout_seconds': 5, 'max_concurrent_events': 10}
        assert config['instances']['ventas']['owner_jid'].startswith('52155')

    def test_environment_overrides(self, tmp_path, monkeypatch):
        monkeypatch.setenv('DATABASE_URL', 'sqlite+aiosqlite:///:memory:')
        monkeypatch.setenv('LOG_LEVEL', 'debug')
        monkeypatch.setenv('AUTOMATIONS_DEFAULT_CURRENCY', 'eur')

        config = load_config(tmp_path / "missing.yaml")
        assert config['database']['url'] == 'sqlite+aiosqlite:///:memory:'
        assert config['logging']['level'] == 'DEBUG'
        assert config['locale']['default_currency'] == 'EUR'

    def test_config_path_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text("ledger:\n  record_skipped: true\n", encoding='utf-8')
        monkeypatch.setenv('AUTOMATIONS_CONFIG', str(path))

        assert load_config()['ledger']['record_skipped'] is True


class TestLoadRulesFile:

    def test_list_and_mapping_forms(self, tmp_path):
        as_list = tmp_path / "list.yaml"
        as_list.write_text("- id: a\n  name: A\n", encoding='utf-8')
        as_mapping = tmp_path / "mapping.yaml"
        as_mapping.write_text("rules:\n  - id: b\n    name: B\n", encoding='utf-8')

        assert load_rules_file(as_list) == [{'id': 'a', 'name': 'A'}]
        assert load_rules_file(as_mapping) == [{'id': 'b', 'name': 'B'}]

    def test_scalar_is_rejected(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("just a string\n", encoding='utf-8')

        with pytest.raises(ValueError):
            load_rules_file(path)
