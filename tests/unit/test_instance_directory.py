"""
Unit tests for JID normalization and the config-backed instance directory
"""

import pytest

from src.core.exceptions import InstanceNotFoundError
from src.core.instance_directory import ConfigInstanceDirectory, normalize_jid


class TestNormalizeJid:

    def test_device_suffix_is_dropped(self):
        assert normalize_jid("5215511111111:12@s.whatsapp.net") == "5215511111111@s.whatsapp.net"

    def test_legacy_server(self):
        assert normalize_jid("5215511111111@c.us") == "5215511111111@s.whatsapp.net"

    def test_bare_phone_number(self):
        assert normalize_jid("+5215511111111") == "5215511111111@s.whatsapp.net"

    def test_group_jid_is_kept(self):
        assert normalize_jid("120363040000000000@g.us") == "120363040000000000@g.us"

    def test_empty(self):
        assert normalize_jid(None) == ""
        assert normalize_jid("") == ""


class TestConfigInstanceDirectory:

    @pytest.mark.asyncio
    async def test_owner_lookup(self):
        directory = ConfigInstanceDirectory({
            'ventas': {'owner_jid': '5215511111111@c.us'},
            'soporte': '5215533333333',
        })

        assert await directory.get_instance_owner_jid('ventas') == "5215511111111@s.whatsapp.net"
        assert await directory.get_instance_owner_jid('soporte') == "5215533333333@s.whatsapp.net"

    @pytest.mark.asyncio
    async def test_unknown_instance(self):
        directory = ConfigInstanceDirectory({'broken': {}})

        with pytest.raises(InstanceNotFoundError):
            await directory.get_instance_owner_jid('broken')
        with pytest.raises(InstanceNotFoundError):
            await directory.get_instance_owner_jid('missing')

    @pytest.mark.asyncio
    async def test_register(self):
        directory = ConfigInstanceDirectory()
        directory.register('nuevo', '5215544444444:3@s.whatsapp.net')

        assert await directory.get_instance_owner_jid('nuevo') == "5215544444444@s.whatsapp.net"
