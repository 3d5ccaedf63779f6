"""
Access policy for linked API keys.

Pure function of an already-resolved caller snapshot: no I/O, no side effects.
First matching rule wins:

1. System admins may act on any owner.
2. A user may act on their own personal key.
3. An active manager of the owner's alliance may read its manager keys; only
   managers with the ``admin`` role may link or unlink them.
4. Everyone else is denied.
"""

from typing import Optional

from ..constants import CredentialAction, OwnerKind
from ..schemas.credential_schemas import AccessDecision, Caller


def authorize(
    caller: Caller,
    owner_kind: OwnerKind,
    owner_id: str,
    action: CredentialAction,
    alliance_id: Optional[str] = None,
) -> AccessDecision:
    """
    Decide whether ``caller`` may perform ``action`` on an owner's key.

    Args:
        caller: Permission snapshot of the requester
        owner_kind: Kind of the owner record
        owner_id: Owner record id
        action: Attempted action
        alliance_id: Alliance of an alliance-manager owner; required for rule 3

    Returns:
        AccessDecision.allow() or AccessDecision.deny(reason)
    """
    if caller.is_system_admin:
        return AccessDecision.allow()

    if owner_kind == OwnerKind.USER:
        if caller.user_id == owner_id:
            return AccessDecision.allow()
        return AccessDecision.deny()

    if alliance_id is None:
        return AccessDecision.deny()

    grant = caller.active_grant_for(alliance_id)
    if grant is None:
        return AccessDecision.deny()

    if action.is_mutating and not grant.is_admin:
        return AccessDecision.deny("insufficient privilege: alliance admin role required")

    return AccessDecision.allow()
