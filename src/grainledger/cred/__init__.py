"""Cred score source consumed by Grain allocation."""

from grainledger.cred.view import CredGrainView, CredParticipant, CredScores, Interval

__all__ = ["CredGrainView", "CredParticipant", "CredScores", "Interval"]
