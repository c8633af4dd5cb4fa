"""
Unit Tests for the User Store.
"""

from types import SimpleNamespace

from modules.telegram.users import Tier, UserStore


class TestAuthorization:
    def test_empty_list_allows_everyone(self):
        users = UserStore()

        assert users.open_access
        assert users.is_authorized(999)

    def test_only_listed_callers(self):
        users = UserStore(authorized_users=[1, 2])

        assert users.is_authorized(1)
        assert not users.is_authorized(3)

    def test_authorize_and_revoke(self):
        users = UserStore(authorized_users=[1])

        users.authorize(5, Tier.PRO)
        assert users.is_authorized(5)
        assert users.tier(5) is Tier.PRO

        users.revoke(5)
        assert not users.is_authorized(5)
        assert users.tier(5) is Tier.FREE
        assert users.authorized_users == [1]


class TestTiers:
    def test_default_tier_is_free(self):
        assert UserStore().tier(1) is Tier.FREE

    def test_tier_ranking(self):
        users = UserStore(subscription_tiers={1: "FREE", 2: "PREMIUM", 3: "PRO"})

        assert not users.has_tier(1, Tier.PREMIUM)
        assert users.has_tier(2, Tier.PREMIUM)
        assert users.has_tier(3, Tier.PREMIUM)
        assert not users.has_tier(2, Tier.PRO)
        assert all(users.has_tier(c, Tier.FREE) for c in (1, 2, 3, 4))

    def test_from_config(self):
        telegram = SimpleNamespace(authorized_users=[10], subscription_tiers={10: "PRO"})

        users = UserStore.from_config(telegram)

        assert users.is_authorized(10)
        assert users.tier(10) is Tier.PRO
