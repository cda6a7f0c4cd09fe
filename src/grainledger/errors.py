"""Error taxonomy for the Grain ledger.

Every failure is local and synchronous. Nothing is retried: the engine is
pure, so retrying without changing inputs cannot change the outcome.

All errors are ValueErrors so that callers guarding a whole operation can
catch a single type. BudgetConservationViolated is the exception to the
"user error" reading: it always indicates a defect, and the surrounding
distribution must be abandoned rather than partially applied.
"""

from __future__ import annotations


class GrainLedgerError(ValueError):
    """Base class for all ledger and allocation errors."""


class InvalidGrainAmount(GrainLedgerError):
    """A Grain amount was negative, non-integral or malformed."""


class InvalidPolicy(GrainLedgerError):
    """An allocation policy has a bad budget or a malformed shape."""


class ScoreSourceNotReady(GrainLedgerError):
    """The Cred view failed its grain-allocation precondition check."""


class UnknownRecipient(GrainLedgerError):
    """A SPECIAL policy names an identity that does not exist."""


class SpecialPolicyRequired(GrainLedgerError):
    """The SPECIAL-only entry point was called with another policy type."""


class BudgetConservationViolated(GrainLedgerError):
    """Receipts do not sum to the policy budget. Always a defect."""


class NoEligibleRecipients(GrainLedgerError):
    """A positive budget has nobody with positive weight to go to."""


class MalformedRecord(GrainLedgerError):
    """A serialized allocation or distribution could not be decoded."""


class UnknownIdentity(GrainLedgerError):
    """No live account exists for the given identity id or name."""


class InvalidIdentityName(GrainLedgerError):
    """An identity name does not satisfy the naming rules."""


class DuplicateIdentityName(GrainLedgerError):
    """An identity name is already taken."""


class AliasConflict(GrainLedgerError):
    """An alias is already claimed by an identity."""


class InvalidMerge(GrainLedgerError):
    """A merge request is not allowed (self-merge, retired ids)."""


class DistributionConflict(GrainLedgerError):
    """A distribution was already applied or is out of order."""


class InsufficientBalance(GrainLedgerError):
    """A transfer would take an account balance below zero."""
