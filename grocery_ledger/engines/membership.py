"""
Membership Coordinator

Governs user registration, group creation, invitations and the
read operations over user and group records.

Invitation lifecycle:

    PENDING --accept--> ACCEPTED
    PENDING --decline--> DECLINED

Both transitions are terminal and delete the invite from the invitee's
inbox, so consuming an invite twice fails with NotFoundError.

ATOMICITY:
- create_group writes the new Group and the owner's GroupRef in one transaction
- accept_invitation adds the Member, adds the GroupRef and removes the
  Invite in one transaction
- everything else touches a single record

Every check on the caller's identity happens before anything is written.
"""

from typing import Optional
from uuid import UUID

import structlog

from grocery_ledger.audit import AuditLogger
from grocery_ledger.config import AppSettings, get_settings
from grocery_ledger.engines.base import (
    require_caller,
    require_group,
    require_member,
    require_self,
    storage_errors_as_transient,
)
from grocery_ledger.errors import ConflictError, NotFoundError, ValidationError
from grocery_ledger.models.group import Group, GroupRef, Member, utc_now
from grocery_ledger.models.user import Caller, Invite, User
from grocery_ledger.services.storage import LedgerStorageInterface, StorageTransaction


logger = structlog.get_logger(__name__)


def _required(value: Optional[str], field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"The operation must be called with a {field} argument.")
    return text


class MembershipCoordinator:
    """
    State machine for groups, members and invitations.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._storage = storage
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().app

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def register_user(
        self,
        uid: str,
        email: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> User:
        """
        Create the user record for a freshly authenticated identity.

        Raises:
            ValidationError: If uid, email or name is empty
            ConflictError: If a user with this uid already exists
        """
        user = User(
            id=_required(uid, "uid"),
            email=_required(email, "email"),
            name=_required(name, "name"),
        )

        async def work(txn: StorageTransaction) -> User:
            if await txn.get_user(user.id) is not None:
                raise ConflictError("User already exists.")
            txn.put_user(user)
            return user

        async with storage_errors_as_transient("register user"):
            created = await self._storage.run_transaction(work)

        if self._audit_logger:
            await self._audit_logger.log_user_registered(
                user_id=created.id,
                email=created.email,
                correlation_id=correlation_id,
            )
        return created

    async def _load_user(self, user_id: str) -> User:
        async with storage_errors_as_transient("load user"):
            user = await self._storage.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        return user

    async def get_user_data(self, caller: Optional[Caller], uid: str) -> User:
        require_self(caller, _required(uid, "uid"), "access")
        return await self._load_user(uid)

    async def get_user_groups(self, caller: Optional[Caller], uid: str) -> list[GroupRef]:
        require_self(caller, _required(uid, "uid"), "access")
        return list((await self._load_user(uid)).groups)

    async def get_user_invites(self, caller: Optional[Caller], uid: str) -> list[Invite]:
        require_self(caller, _required(uid, "uid"), "access")
        return list((await self._load_user(uid)).invites)

    async def search_user_groups(
        self,
        caller: Optional[Caller],
        uid: str,
        search_term: Optional[str],
    ) -> list[GroupRef]:
        """Case-insensitive substring match on the user's group names."""
        groups = await self.get_user_groups(caller, uid)
        term = (search_term or "").strip().lower()
        if not term:
            return groups
        return [ref for ref in groups if term in ref.name.lower()]

    # -------------------------------------------------------------------------
    # Groups
    # -------------------------------------------------------------------------

    def _normalize_group_name(self, name: Optional[str]) -> str:
        trimmed = _required(name, "name")
        if len(trimmed) > self._settings.max_group_name_length:
            raise ValidationError(
                f"Group name cannot be longer than "
                f"{self._settings.max_group_name_length} characters."
            )
        return trimmed

    async def check_group_name_exists(
        self,
        caller: Optional[Caller],
        uid: str,
        name: str,
    ) -> bool:
        require_self(caller, _required(uid, "uid"), "check")
        group_name = _required(name, "name")
        user = await self._load_user(uid)
        return user.has_group_named(group_name)

    async def create_group(
        self,
        caller: Optional[Caller],
        uid: str,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> GroupRef:
        """
        Create a group with the caller as its only member.

        The Group record and the caller's GroupRef are written in one
        transaction: either both exist afterwards or neither does.

        Raises:
            ValidationError: Empty or oversized name
            PermissionDeniedError: uid is not the caller
            NotFoundError: The caller has no user record
            ConflictError: The caller already has a group with this name
        """
        caller = require_self(caller, _required(uid, "uid"), "create groups for")
        group_name = self._normalize_group_name(name)
        group_id = self._storage.new_id()

        async def work(txn: StorageTransaction) -> GroupRef:
            user = await txn.get_user(caller.uid)
            if user is None:
                raise NotFoundError("User not found.")
            if user.has_group_named(group_name):
                raise ConflictError("You already have a group with this name.")

            now = utc_now()
            group = Group(
                id=group_id,
                name=group_name,
                creation_date=now,
                members=[Member(id=user.id, name=user.name, join_date=now)],
            )
            ref = group.to_ref()
            txn.put_group(group)
            txn.put_user(user.model_copy(update={"groups": [*user.groups, ref]}))
            return ref

        async with storage_errors_as_transient("create group"):
            ref = await self._storage.run_transaction(work)

        logger.info("group_created", group_id=ref.id, owner_id=caller.uid)
        if self._audit_logger:
            await self._audit_logger.log_group_created(
                group_id=ref.id,
                name=ref.name,
                owner_id=caller.uid,
                correlation_id=correlation_id,
            )
        return ref

    async def get_group_details(self, caller: Optional[Caller], group_id: str) -> Group:
        """Full group record, visible to members only."""
        caller = require_caller(caller)
        group_id = _required(group_id, "groupId")
        async with storage_errors_as_transient("load group"):
            group = require_group(await self._storage.get_group(group_id), group_id)
        require_member(group, caller)
        return group

    # -------------------------------------------------------------------------
    # Invitations
    # -------------------------------------------------------------------------

    async def send_invitation(
        self,
        caller: Optional[Caller],
        group_id: str,
        email: str,
        correlation_id: Optional[UUID] = None,
    ) -> Invite:
        """
        Invite a registered user (found by exact email) into a group.

        Raises:
            PermissionDeniedError: The inviter is not a member
            NotFoundError: Unknown inviter, group or invitee email
            ConflictError: Invitee already a member or already invited
        """
        caller = require_caller(caller)
        group_id = _required(group_id, "groupId")
        email = _required(email, "email")
        invite_id = self._storage.new_id()

        async with storage_errors_as_transient("send invitation"):
            invitee = await self._storage.find_user_by_email(email)
        if invitee is None:
            # Membership is checked first so outsiders can't probe for emails
            await self.get_group_details(caller, group_id)
            raise NotFoundError("No user found with the provided email address.")

        async def work(txn: StorageTransaction) -> Invite:
            inviter = await txn.get_user(caller.uid)
            if inviter is None:
                raise NotFoundError("Inviter user not found.")
            group = require_group(await txn.get_group(group_id), group_id)
            require_member(group, caller)

            target = await txn.get_user(invitee.id)
            if target is None:
                raise NotFoundError("No user found with the provided email address.")
            if group.is_member(target.id):
                raise ConflictError("User is already a member of this group.")
            if target.has_invite_for(group_id):
                raise ConflictError("User has already been invited to this group.")

            invite = Invite(
                id=invite_id,
                group_id=group.id,
                group_name=group.name,
                inviter_id=inviter.id,
                inviter_name=inviter.name,
                timestamp=utc_now(),
            )
            txn.put_user(target.model_copy(update={"invites": [*target.invites, invite]}))
            return invite

        async with storage_errors_as_transient("send invitation"):
            invite = await self._storage.run_transaction(work)

        if self._audit_logger:
            await self._audit_logger.log_invite_sent(
                invite_id=invite.id,
                group_id=group_id,
                inviter_id=caller.uid,
                invitee_id=invitee.id,
                correlation_id=correlation_id,
            )
        return invite

    async def accept_invitation(
        self,
        caller: Optional[Caller],
        invite_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> GroupRef:
        """
        Join the group an invite points at.

        Adding the Member, adding the GroupRef and removing the Invite
        commit together or not at all. Accepting an invite whose group
        has vanished drops the invite and fails.

        Raises:
            NotFoundError: Unknown user, invite not pending, or group gone
        """
        caller = require_caller(caller)
        invite_id = _required(invite_id, "inviteId")

        async def work(txn: StorageTransaction) -> tuple[Optional[GroupRef], Invite]:
            user = await txn.get_user(caller.uid)
            if user is None:
                raise NotFoundError("User not found.")
            invite = user.find_invite(invite_id)
            if invite is None:
                raise NotFoundError("Invitation not found.")

            remaining = [i for i in user.invites if i.id != invite_id]
            group = await txn.get_group(invite.group_id)
            if group is None:
                txn.put_user(user.model_copy(update={"invites": remaining}))
                return None, invite

            if not group.is_member(user.id):
                member = Member(id=user.id, name=user.name, join_date=utc_now())
                txn.put_group(group.model_copy(update={"members": [*group.members, member]}))

            ref = group.to_ref()
            groups = user.groups if user.has_group(group.id) else [*user.groups, ref]
            txn.put_user(user.model_copy(update={"groups": groups, "invites": remaining}))
            return ref, invite

        async with storage_errors_as_transient("accept invitation"):
            ref, invite = await self._storage.run_transaction(work)

        if ref is None:
            logger.warning("stale_invite_dropped", invite_id=invite_id, group_id=invite.group_id)
            if self._audit_logger:
                await self._audit_logger.log_stale_invite_dropped(
                    invite_id=invite_id,
                    group_id=invite.group_id,
                    user_id=caller.uid,
                    correlation_id=correlation_id,
                )
            raise NotFoundError("Group not found.", details={"group_id": invite.group_id})

        if self._audit_logger:
            await self._audit_logger.log_invite_resolved(
                invite_id=invite_id,
                group_id=ref.id,
                user_id=caller.uid,
                accepted=True,
                correlation_id=correlation_id,
            )
        return ref

    async def decline_invitation(
        self,
        caller: Optional[Caller],
        invite_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> Invite:
        """
        Remove a pending invite from the caller's inbox.

        Raises:
            NotFoundError: Unknown user, or invite not pending
        """
        caller = require_caller(caller)
        invite_id = _required(invite_id, "inviteId")

        async def work(txn: StorageTransaction) -> Invite:
            user = await txn.get_user(caller.uid)
            if user is None:
                raise NotFoundError("User not found.")
            invite = user.find_invite(invite_id)
            if invite is None:
                raise NotFoundError("Invitation not found.")
            txn.put_user(user.model_copy(
                update={"invites": [i for i in user.invites if i.id != invite_id]}
            ))
            return invite

        async with storage_errors_as_transient("decline invitation"):
            invite = await self._storage.run_transaction(work)

        if self._audit_logger:
            await self._audit_logger.log_invite_resolved(
                invite_id=invite_id,
                group_id=invite.group_id,
                user_id=caller.uid,
                accepted=False,
                correlation_id=correlation_id,
            )
        return invite
