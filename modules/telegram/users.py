"""
User Store.

Authorization and subscription tiers for bot callers. Telegram user IDs are
immutable integers that cannot be spoofed within the Telegram API, so the
caller ID alone identifies a user.

An empty authorized list allows everyone (development mode).
"""

from enum import Enum
from typing import Any

from modules.backend.core.logging import get_logger

logger = get_logger(__name__)


class Tier(str, Enum):
    FREE = "FREE"
    PREMIUM = "PREMIUM"
    PRO = "PRO"

    @property
    def rank(self) -> int:
        return TIER_RANKS[self]


TIER_RANKS = {
    Tier.FREE: 1,
    Tier.PREMIUM: 2,
    Tier.PRO: 3,
}


class UserStore:
    """
    Authorized callers and their subscription tiers.

    Usage:
        users = UserStore.from_config(app_config.application.telegram)
        if users.is_authorized(caller_id) and users.has_tier(caller_id, Tier.PREMIUM):
            ...
    """

    def __init__(
        self,
        authorized_users: list[int] | None = None,
        subscription_tiers: dict[int, Tier | str] | None = None,
    ) -> None:
        self._authorized = set(authorized_users or [])
        self._tiers = {int(k): Tier(v) for k, v in (subscription_tiers or {}).items()}

    @classmethod
    def from_config(cls, telegram: Any) -> "UserStore":
        return cls(
            authorized_users=list(telegram.authorized_users),
            subscription_tiers=dict(telegram.subscription_tiers),
        )

    @property
    def open_access(self) -> bool:
        return not self._authorized

    def is_authorized(self, caller_id: int) -> bool:
        if self.open_access:
            return True
        authorized = caller_id in self._authorized
        if not authorized:
            logger.warning("Unauthorized Telegram access attempt", extra={"caller_id": caller_id})
        return authorized

    def tier(self, caller_id: int) -> Tier:
        return self._tiers.get(caller_id, Tier.FREE)

    def has_tier(self, caller_id: int, required: Tier) -> bool:
        return self.tier(caller_id).rank >= required.rank

    def authorize(self, caller_id: int, tier: Tier | None = None) -> None:
        self._authorized.add(caller_id)
        if tier is not None:
            self._tiers[caller_id] = tier

    def revoke(self, caller_id: int) -> None:
        self._authorized.discard(caller_id)
        self._tiers.pop(caller_id, None)

    @property
    def authorized_users(self) -> list[int]:
        return sorted(self._authorized)
