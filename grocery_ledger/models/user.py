"""
User Models for Grocery Ledger

A User record is owned by the identity it represents. It indexes the
groups the user belongs to and holds the user's pending invitations.

DESIGN DECISION: Invites live in exactly one place, the invitee's
`invites` list. There is no separate invite collection; invite ids are
minted by the same generator as every other record id.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from grocery_ledger.models.group import GroupRef, new_id, utc_now


class Invite(BaseModel):
    """
    A pending, single-recipient offer of group membership.

    Lifecycle: PENDING -> ACCEPTED | DECLINED. Both transitions delete
    the invite from the invitee's inbox, so a consumed invite is simply
    absent.
    """

    id: str = Field(default_factory=new_id)
    group_id: str
    group_name: str
    inviter_id: str
    inviter_name: str
    timestamp: datetime = Field(default_factory=utc_now)


class User(BaseModel):
    """A registered user."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    groups: list[GroupRef] = Field(default_factory=list)
    invites: list[Invite] = Field(default_factory=list)
    creation_date: datetime = Field(default_factory=utc_now)

    # Incremented by the store on every committed write
    version: int = Field(default=0, ge=0)

    def has_group_named(self, name: str) -> bool:
        """Case-insensitive check against the user's own groups."""
        wanted = name.strip().lower()
        return any(ref.name.strip().lower() == wanted for ref in self.groups)

    def has_group(self, group_id: str) -> bool:
        return any(ref.id == group_id for ref in self.groups)

    def find_invite(self, invite_id: str) -> Optional[Invite]:
        for invite in self.invites:
            if invite.id == invite_id:
                return invite
        return None

    def has_invite_for(self, group_id: str) -> bool:
        return any(invite.group_id == group_id for invite in self.invites)


class Caller(BaseModel):
    """
    The authenticated identity behind a request.

    Produced by the credential provider; the ledger only consumes it.
    """

    uid: str = Field(..., min_length=1)
    email: Optional[str] = None
    display_name: Optional[str] = None

    @property
    def buyer_name(self) -> str:
        """Name recorded on a checkout: display name, falling back to email."""
        return self.display_name or self.email or self.uid
