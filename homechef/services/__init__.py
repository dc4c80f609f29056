"""
                        Services Module

External collaborators of the core, each with a Mock (development) and a
Real (production) implementation chosen by ENV_MODE.

Services:
    - payment: Tip settlement (mock gateway / Stripe)
    - notifications: Event notifier (logging mock / Celery queue)
    - ledger_export: File-locked Excel export of settled tips
"""

from homechef.services.ledger_export import LedgerExporter

__all__ = ["LedgerExporter"]
