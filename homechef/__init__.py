"""
                HomeChef Order & Ledger Core

Order state machine, tip ledger and platform fee calculator behind the
HomeChef customer, chef and delivery-partner apps, with hybrid Mock/Real
service architecture.

Version: 4.0.0
License: MIT
"""

__version__ = "4.0.0"
