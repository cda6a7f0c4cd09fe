"""Durable records: the ledger event log and the allocation codec."""
