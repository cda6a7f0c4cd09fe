"""Grain ledger — Cred-proportional Grain allocation over an event-sourced ledger."""

__version__ = "0.1.0"
