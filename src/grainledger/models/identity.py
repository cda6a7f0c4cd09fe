"""Identity and account models.

An Identity is a participant: a user, a bot, a project or an
organization. Its id is a uuid4 string, permanent and never reused, even
after the identity is merged away. The name and the alias set may change
(via rename, alias-add and merge); every change produces a new value.

An Account is the ledger's bookkeeping row for one identity. Only active
accounts are eligible for Cred-based distributions.
"""

from __future__ import annotations

import dataclasses
import enum
import re
import uuid
from dataclasses import dataclass
from typing import FrozenSet, Iterable

from grainledger.errors import InvalidIdentityName
from grainledger.models.grain import ZERO, Grain

IdentityId = str

NAME_MAX_LENGTH = 39
_NAME_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


class IdentitySubtype(str, enum.Enum):
    """Kind of participant an identity represents."""
    USER = "USER"
    BOT = "BOT"
    PROJECT = "PROJECT"
    ORGANIZATION = "ORGANIZATION"


def new_identity_id() -> IdentityId:
    return str(uuid.uuid4())


def validate_identity_name(name: str) -> str:
    """Return the name if valid, else raise InvalidIdentityName.

    Names are 1 to NAME_MAX_LENGTH characters of letters, digits,
    dashes and underscores.
    """
    if not isinstance(name, str) or not _NAME_PATTERN.fullmatch(name):
        raise InvalidIdentityName(
            f"Invalid identity name {name!r}: use letters, digits, '-' and '_'"
        )
    if len(name) > NAME_MAX_LENGTH:
        raise InvalidIdentityName(
            f"Invalid identity name {name!r}: longer than {NAME_MAX_LENGTH} characters"
        )
    return name


@dataclass(frozen=True)
class Identity:
    """A participant known to the ledger."""
    id: IdentityId
    name: str
    subtype: IdentitySubtype
    aliases: FrozenSet[str] = frozenset()

    def renamed(self, name: str) -> Identity:
        return dataclasses.replace(self, name=validate_identity_name(name))

    def with_aliases(self, aliases: Iterable[str]) -> Identity:
        return dataclasses.replace(self, aliases=self.aliases | frozenset(aliases))


@dataclass(frozen=True)
class Account:
    """Per-identity bookkeeping row.

    balance moves with distributions and transfers; paid is the lifetime
    total received from distributions and never decreases.
    """
    identity: Identity
    active: bool = False
    balance: Grain = ZERO
    paid: Grain = ZERO

    @property
    def id(self) -> IdentityId:
        return self.identity.id
