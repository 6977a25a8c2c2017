from __future__ import annotations
import uuid

from ..core.errors import UnknownTag
from .directory import SqlDirectory


class IdentityResolver:
    def __init__(self, directory: SqlDirectory):
        self._directory = directory

    async def resolve_by_tag(self, nfc_id: str) -> uuid.UUID:
        """Member bound to a physical tag. Read-only against the directory."""
        member_id = await self._directory.find_by_tag(nfc_id.strip())
        if member_id is None:
            raise UnknownTag()
        return member_id
