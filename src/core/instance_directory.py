"""
Instance directory - resolves the owning account JID of a WhatsApp instance
"""

import logging
from typing import Any, Dict, Optional

from src.core.exceptions import InstanceNotFoundError


USER_SERVER = 's.whatsapp.net'
LEGACY_USER_SERVER = 'c.us'


def normalize_jid(jid: Optional[str]) -> str:
    """Canonical form for comparing JIDs.

    Drops the multi-device suffix (``5215512345678:12@s.whatsapp.net``),
    maps the legacy ``@c.us`` server to ``@s.whatsapp.net`` and lowercases.
    A bare phone number gets the user server appended.
    """
    if not jid:
        return ""

    jid = jid.strip().lower()
    if '@' not in jid:
        user, server = jid.lstrip('+'), USER_SERVER
    else:
        user, server = jid.split('@', 1)

    if ':' in user:
        user = user.split(':', 1)[0]
    if server == LEGACY_USER_SERVER:
        server = USER_SERVER

    return f"{user}@{server}"


class ConfigInstanceDirectory:
    """Instance directory backed by the 'instances' config section"""

    def __init__(self, instances: Optional[Dict[str, Any]] = None):
        self.logger = logging.getLogger(__name__)
        self._owners: Dict[str, str] = {}

        for instance_id, entry in (instances or {}).items():
            owner = entry.get('owner_jid') if isinstance(entry, dict) else entry
            if not owner:
                self.logger.warning(f"Instance {instance_id} has no owner_jid configured")
                continue
            self._owners[str(instance_id)] = normalize_jid(owner)

        self.logger.debug(f"Instance directory loaded with {len(self._owners)} instances")

    async def get_instance_owner_jid(self, instance_id: str) -> str:
        try:
            return self._owners[instance_id]
        except KeyError:
            raise InstanceNotFoundError(instance_id) from None

    def register(self, instance_id: str, owner_jid: str):
        self._owners[instance_id] = normalize_jid(owner_jid)
