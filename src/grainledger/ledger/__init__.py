"""Event-sourced identity and Grain ledger."""

from grainledger.ledger.ledger import Ledger

__all__ = ["Ledger"]
