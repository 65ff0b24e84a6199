import json
import logging

from . import keys
from .errors import NotFound
from .models import Caller
from .store import Store

logger = logging.getLogger(__name__)


class ProfileDirectory:
    """Resolves a user id to a display name and role from the host app's profile records"""

    def __init__(self, store: Store):
        self.store = store

    async def lookup(self, user_id: str) -> Caller:
        raw = await self.store.get(keys.user(user_id))
        if not raw:
            raise NotFound("User not found")
        try:
            profile = json.loads(raw)
        except ValueError:
            logger.warning("Unreadable profile record for %s", user_id)
            raise NotFound("User not found")

        name = profile.get("name") or profile.get("username") or "Anonymous"
        return Caller(user_id=user_id, name=name, role=profile.get("role"))
