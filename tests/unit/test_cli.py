"""
Tests for the automations command line interface
"""

import json

import pytest
from click.testing import CliRunner

from src.cli import cli


RULES_YAML = """rules:
  - id: bills
    name: Bills
    trigger:
      type: reaction
      emojis: ["💰"]
    action:
      kind: create_bill_payable
"""


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.setattr('src.cli.configure_logging', lambda config: None)
    monkeypatch.setattr('src.config.config_loader.load_dotenv', lambda *args, **kwargs: False)
    monkeypatch.delenv('DATABASE_URL', raising=False)

    path = tmp_path / "automations.yaml"
    path.write_text(
        f"database:\n  url: 'sqlite+aiosqlite:///{tmp_path / 'cli.db'}'\n"
        "instances:\n  inst-1:\n    owner_jid: '5215511111111@s.whatsapp.net'\n",
        encoding='utf-8'
    )
    return path


class TestCli:

    def test_parse_bill_dry_run(self, config_file):
        runner = CliRunner()
        result = runner.invoke(cli, [
            '--config', str(config_file), 'parse', 'create_bill_payable',
            'Pago 5,000 a Carlos', '--sent-at', '2024-03-04T10:00:00'
        ])

        assert result.exit_code == 0, result.output
        assert "[0] bill" in result.output
        assert '"vendor": "Carlos"' in result.output
        assert '"amount": "5000.00"' in result.output

    def test_parse_nothing_extracted(self, config_file):
        result = CliRunner().invoke(cli, ['--config', str(config_file), 'parse', 'create_task', '   '])

        assert result.exit_code == 0
        assert "No entity extracted" in result.output

    def test_load_rules_then_process(self, config_file, tmp_path):
        rules_path = tmp_path / "rules.yaml"
        rules_path.write_text(RULES_YAML, encoding='utf-8')
        runner = CliRunner()

        result = runner.invoke(cli, ['--config', str(config_file), 'load-rules', str(rules_path)])
        assert result.exit_code == 0, result.output
        assert "Loaded 1 rules" in result.output

        event = {
            'type': 'reaction', 'instance_id': 'inst-1', 'chat_id': '5215599999999@s.whatsapp.net',
            'message_id': 'MSG-CLI-1', 'sender_jid': '5215522222222@s.whatsapp.net',
            'reactor_jid': '5215511111111@s.whatsapp.net', 'emoji': '💰',
            'content': 'Pago 1,200 a Laura', 'timestamp': '2024-03-04T16:00:00Z',
        }
        result = runner.invoke(cli, ['--config', str(config_file), 'process', json.dumps(event)])
        assert result.exit_code == 0, result.output
        assert json.loads(result.output[result.output.index('['):])[0]['record']['status'] == 'success'

        result = runner.invoke(cli, ['--config', str(config_file), 'rules'])
        assert "bills: Bills" in result.output
        assert "runs=1 ok=1" in result.output

    def test_process_reads_event_file(self, config_file, tmp_path):
        rules_path = tmp_path / "rules.yaml"
        rules_path.write_text(RULES_YAML, encoding='utf-8')
        event_path = tmp_path / "event.json"
        event_path.write_text(json.dumps({
            'type': 'reaction', 'instance_id': 'inst-1', 'message_id': 'MSG-CLI-2',
            'sender_jid': '5215522222222@s.whatsapp.net', 'reactor_jid': '5215511111111@s.whatsapp.net',
            'emoji': '💰', 'content': 'Pago 300 a Pedro', 'timestamp': '2024-03-04T16:00:00Z',
        }), encoding='utf-8')
        runner = CliRunner()
        runner.invoke(cli, ['--config', str(config_file), 'load-rules', str(rules_path)])

        result = runner.invoke(cli, ['--config', str(config_file), 'process', str(event_path)])

        assert result.exit_code == 0, result.output
        assert json.loads(result.output[result.output.index('['):])[0]['record']['status'] == 'success'

    def test_process_missing_event_file_aborts(self, config_file, tmp_path):
        result = CliRunner().invoke(cli, ['--config', str(config_file), 'process', str(tmp_path / "nope.json")])

        assert result.exit_code != 0
        assert "Cannot read event file" in result.output

    def test_invalid_rules_file_aborts(self, config_file, tmp_path):
        rules_path = tmp_path / "rules.yaml"
        rules_path.write_text("- id: broken\n  name: Broken\n  trigger: {type: reaction}\n"
                              "  action: {kind: create_task}\n", encoding='utf-8')

        result = CliRunner().invoke(cli, ['--config', str(config_file), 'load-rules', str(rules_path)])

        assert result.exit_code != 0
        assert "RULE_VALIDATION_ERROR" in result.output
