"""
Unit tests for log formatting and masking
"""

import json
import logging

from src.core.logging_manager import JSONFormatter, PerformanceTimer, SecuritySafeFormatter


def _record(message, **extra):
    record = logging.LogRecord('src.core.test', logging.INFO, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:

    def test_phone_numbers_in_jids_are_masked(self):
        formatter = SecuritySafeFormatter('%(message)s')
        output = formatter.format(_record("Reaction from 5215511111111:4@s.whatsapp.net"))

        assert output == "Reaction from 52155******11:4@s.whatsapp.net"

    def test_masking_can_be_disabled(self):
        formatter = SecuritySafeFormatter('%(message)s', mask_phone_numbers=False)
        assert "5215511111111" in formatter.format(_record("owner 5215511111111@c.us"))

    def test_secrets_are_redacted(self):
        formatter = SecuritySafeFormatter('%(message)s')
        assert formatter.format(_record("connecting with api_key=abc123")) == "connecting with api_key=***"

    def test_json_formatter_includes_extra_context(self):
        formatter = JSONFormatter()
        payload = json.loads(formatter.format(_record(
            "Rule r1 success", rule_id='r1', actor='5215511111111@s.whatsapp.net', token='xyz'
        )))

        assert payload['level'] == 'INFO'
        assert payload['message'] == "Rule r1 success"
        assert payload['context']['rule_id'] == 'r1'
        assert payload['context']['actor'] == "52155******11@s.whatsapp.net"
        assert payload['context']['token'] == '***'


class TestPerformanceTimer:

    def test_logs_duration(self, caplog):
        logger = logging.getLogger('src.core.test_timer')
        with caplog.at_level(logging.DEBUG, logger='src.core.test_timer'):
            with PerformanceTimer(logger, "unit", rule_id='r1') as timer:
                pass

        assert timer.duration_ms >= 0
        assert caplog.records[-1].operation == "unit"
        assert caplog.records[-1].rule_id == 'r1'
