"""
Payout Account Resolution

Stripe needs three things the tip ledger does not store itself: the
payer's Stripe customer, the saved payment method to charge off-session,
and the recipient's connected account that receives the transfer.

Resolvers look these up per tip:
    - InMemoryPayoutAccountResolver: dictionaries, for tests and scripts
    - SqlPayoutAccountResolver: the payout_accounts table (staging, production)

Rows are written by account onboarding (save_payer / save_recipient).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayoutAccounts:
    """Gateway identifiers needed to move one tip from payer to recipient."""
    customer: Optional[str] = None
    payment_method: Optional[str] = None
    destination: Optional[str] = None

    @property
    def missing(self) -> list[str]:
        return [name for name in ("customer", "payment_method", "destination") if not getattr(self, name)]

    @property
    def is_complete(self) -> bool:
        return not self.missing

    def as_metadata(self) -> dict[str, str]:
        """Settlement metadata keys read by StripePaymentService."""
        return {
            "customer": self.customer,
            "payment_method": self.payment_method,
            "destination": self.destination,
        }


class BasePayoutAccountResolver(ABC):
    """Looks up the gateway accounts behind a payer and a recipient."""

    @abstractmethod
    async def resolve(self, from_user_id: str, recipient_id: str) -> PayoutAccounts:
        """Return whatever is known; missing pieces are left as None."""
        pass

    @abstractmethod
    async def save_payer(self, user_id: str, customer: str, payment_method: str) -> None:
        pass

    @abstractmethod
    async def save_recipient(self, user_id: str, connected_account: str) -> None:
        pass


class InMemoryPayoutAccountResolver(BasePayoutAccountResolver):

    def __init__(self):
        self._payers: dict[str, tuple[str, str]] = {}
        self._recipients: dict[str, str] = {}

    async def resolve(self, from_user_id: str, recipient_id: str) -> PayoutAccounts:
        customer, payment_method = self._payers.get(from_user_id, (None, None))
        return PayoutAccounts(
            customer=customer,
            payment_method=payment_method,
            destination=self._recipients.get(recipient_id),
        )

    async def save_payer(self, user_id: str, customer: str, payment_method: str) -> None:
        self._payers[user_id] = (customer, payment_method)

    async def save_recipient(self, user_id: str, connected_account: str) -> None:
        self._recipients[user_id] = connected_account


class SqlPayoutAccountResolver(BasePayoutAccountResolver):
    """Resolver over the payout_accounts table, one row per user."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def resolve(self, from_user_id: str, recipient_id: str) -> PayoutAccounts:
        from homechef.models import PayoutAccountRecord

        async with self._session_maker() as session:
            payer = await session.get(PayoutAccountRecord, from_user_id)
            recipient = await session.get(PayoutAccountRecord, recipient_id)

        return PayoutAccounts(
            customer=payer.stripe_customer_id if payer else None,
            payment_method=payer.default_payment_method if payer else None,
            destination=recipient.connected_account_id if recipient else None,
        )

    async def _save(self, user_id: str, **fields) -> None:
        from homechef.models import PayoutAccountRecord

        async with self._session_maker() as session:
            async with session.begin():
                record = await session.get(PayoutAccountRecord, user_id)
                if record is None:
                    record = PayoutAccountRecord(user_id=user_id)
                    session.add(record)
                for name, value in fields.items():
                    setattr(record, name, value)
                record.updated_at = datetime.now(timezone.utc)
        logger.info(f"Payout account of {user_id} updated ({', '.join(fields)})")

    async def save_payer(self, user_id: str, customer: str, payment_method: str) -> None:
        await self._save(user_id, stripe_customer_id=customer, default_payment_method=payment_method)

    async def save_recipient(self, user_id: str, connected_account: str) -> None:
        await self._save(user_id, connected_account_id=connected_account)
