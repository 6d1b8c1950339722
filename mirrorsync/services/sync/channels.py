"""
Push channel ids

A channel id encodes who it belongs to: "<resource_type>-<user_id>-<8 hex>".
The random suffix keeps a renewed channel distinct from the one it replaces.
"""
import re
import secrets
from typing import Optional, Tuple

from mirrorsync.models.domain import ResourceType

_CHANNEL_ID_RE = re.compile(r"^(calendar|mailbox)-(.+)-([0-9a-f]{8})$")


def make_channel_id(resource_type: ResourceType, user_id: str) -> str:
    return f"{resource_type.value}-{user_id}-{secrets.token_hex(4)}"


def parse_channel_id(channel_id: Optional[str]) -> Optional[Tuple[ResourceType, str]]:
    """Return (resource_type, user_id), or None for ids this service did not issue."""
    if not channel_id:
        return None
    match = _CHANNEL_ID_RE.match(channel_id.strip())
    if not match:
        return None
    return ResourceType(match.group(1)), match.group(2)
