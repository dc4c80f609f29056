"""
Store Factory

Returns in-memory or SQL stores based on ENV_MODE.

Environment Switching:
    - ENV_MODE=development → InMemoryOrderStore / InMemoryTipStore / InMemoryRewardStore
    - ENV_MODE=staging/production → SqlOrderStore / SqlTipStore / SqlRewardStore
"""

import logging
from functools import lru_cache

from homechef.core.config import get_settings
from homechef.stores.base import OrderStore, RewardStore, TipStore
from homechef.stores.memory import (
    InMemoryOrderStore,
    InMemoryRewardStore,
    InMemoryTipStore,
)

logger = logging.getLogger(__name__)


@lru_cache()
def get_order_store() -> OrderStore:
    """Get the configured order store."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Order Store: Using InMemoryOrderStore (development mode)")
        return InMemoryOrderStore()

    from homechef.database import get_session_maker
    from homechef.stores.sql import SqlOrderStore

    logger.info(f"Order Store: Using SqlOrderStore ({settings.env_mode.value} mode)")
    return SqlOrderStore(get_session_maker())


@lru_cache()
def get_tip_store() -> TipStore:
    """Get the configured tip store."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Tip Store: Using InMemoryTipStore (development mode)")
        return InMemoryTipStore()

    from homechef.database import get_session_maker
    from homechef.stores.sql import SqlTipStore

    logger.info(f"Tip Store: Using SqlTipStore ({settings.env_mode.value} mode)")
    return SqlTipStore(get_session_maker())


@lru_cache()
def get_reward_store() -> RewardStore:
    """Get the configured loyalty token store."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Reward Store: Using InMemoryRewardStore (development mode)")
        return InMemoryRewardStore()

    from homechef.database import get_session_maker
    from homechef.stores.sql import SqlRewardStore

    logger.info(f"Reward Store: Using SqlRewardStore ({settings.env_mode.value} mode)")
    return SqlRewardStore(get_session_maker())


def reset_stores() -> None:
    """Clear the cached store instances."""
    get_order_store.cache_clear()
    get_tip_store.cache_clear()
    get_reward_store.cache_clear()


__all__ = [
    "get_order_store",
    "get_tip_store",
    "get_reward_store",
    "reset_stores",
    "OrderStore",
    "RewardStore",
    "TipStore",
    "InMemoryOrderStore",
    "InMemoryRewardStore",
    "InMemoryTipStore",
]
