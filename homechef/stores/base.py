"""
Storage Contracts

Defines the persistence interface for orders and tip transactions.
Both the in-memory stores (development, tests) and the SQL stores
(staging, production) implement these methods, so the state machine and
the ledger work identically regardless of which backend is active.

Design Pattern: Repository + compare-and-set
    - Order writes are conditional on the stored version stamp
    - Tip writes are conditional on the stored settlement status
    - Token redemptions are conditional on the stored balance
    - Nothing is ever deleted
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from homechef.domain import (
    Order,
    RewardBalance,
    RewardTransaction,
    TipStatus,
    TipTransaction,
)


class OrderStore(ABC):
    """Abstract order repository."""

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the storage backend name (e.g., "memory", "sql")."""
        pass

    @abstractmethod
    async def add(self, order: Order) -> None:
        """Persist a newly created order."""
        pass

    @abstractmethod
    async def get(self, order_id: str) -> Optional[Order]:
        """Return a copy of the stored order, or None."""
        pass

    @abstractmethod
    async def update(self, order: Order, expected_version: int) -> Order:
        """
        Replace the stored order if its version still equals expected_version.

        The caller passes the new state with `version = expected_version + 1`.

        Raises:
            OrderNotFoundError: If the order does not exist
            ConcurrentModificationError: If the stored version moved on
        """
        pass

    @abstractmethod
    async def list(
        self,
        customer_id: Optional[str] = None,
        chef_id: Optional[str] = None,
        delivery_person_id: Optional[str] = None,
    ) -> list[Order]:
        """Return orders matching every given filter, newest first."""
        pass

    async def health_check(self) -> bool:
        """Verify the backend is reachable."""
        return True


class TipStore(ABC):
    """Abstract append-only tip ledger."""

    @property
    @abstractmethod
    def backend_name(self) -> str:
        pass

    @abstractmethod
    async def add(self, tip: TipTransaction) -> None:
        """
        Append a new tip transaction.

        Raises:
            InvalidTipError: The order already has a pending or completed tip
                for the same recipient type
        """
        pass

    @abstractmethod
    async def get(self, tip_id: str) -> Optional[TipTransaction]:
        pass

    @abstractmethod
    async def update(self, tip: TipTransaction, expected_status: TipStatus) -> bool:
        """
        Write the tip if the stored status still equals expected_status.

        Returns:
            bool: False when the stored status has already moved on
        """
        pass

    @abstractmethod
    async def list(
        self,
        recipient_id: Optional[str] = None,
        from_user_id: Optional[str] = None,
        order_id: Optional[str] = None,
        status: Optional[TipStatus] = None,
        created_before: Optional[datetime] = None,
    ) -> list[TipTransaction]:
        """Return tips matching every given filter, oldest first."""
        pass

    async def health_check(self) -> bool:
        return True


class RewardStore(ABC):
    """Abstract loyalty token ledger."""

    @property
    @abstractmethod
    def backend_name(self) -> str:
        pass

    @abstractmethod
    async def earn(self, entry: RewardTransaction) -> bool:
        """
        Credit tokens for an order.

        Returns:
            bool: False when this user already earned tokens on entry.order_id
        """
        pass

    @abstractmethod
    async def redeem(self, entry: RewardTransaction) -> bool:
        """
        Debit tokens if the balance covers them; check and debit are atomic.

        Returns:
            bool: False when the balance is too low
        """
        pass

    @abstractmethod
    async def balance(self, user_id: str) -> RewardBalance:
        pass

    @abstractmethod
    async def history(self, user_id: str) -> list[RewardTransaction]:
        """Token movements of a user, newest first."""
        pass
