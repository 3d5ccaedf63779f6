"""
Builds the caller permission snapshot from the user tables.
"""

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, contains_eager

from ..db.db_alliance_models import Alliance, AllianceManager
from ..db.db_user_models import User
from ..exceptions import AuthenticationError, StoreUnavailableError
from ..schemas.credential_schemas import Caller, ManagerGrant


def load_caller(session: Session, user_id: str) -> Caller:
    """
    Load a Caller snapshot (system-admin tier and active manager grants).

    Raises:
        AuthenticationError: If the session refers to an unknown user
        StoreUnavailableError: On storage failure
    """
    try:
        user = session.get(User, user_id)
        if user is None:
            raise AuthenticationError("Session user no longer exists")

        managers = (
            session.query(AllianceManager)
            .join(AllianceManager.alliance)
            .options(contains_eager(AllianceManager.alliance))
            .filter(
                AllianceManager.user_id == user_id,
                AllianceManager.is_active.is_(True),
                Alliance.is_active.is_(True),
            )
            .all()
        )
    except SQLAlchemyError as e:
        raise StoreUnavailableError("Failed to load caller", cause=e) from e

    return Caller(
        user_id=user.id,
        discord_username=user.discord_username,
        is_system_admin=bool(user.is_system_admin),
        system_admin_level=user.system_admin_level,
        manager_grants=[
            ManagerGrant(
                manager_id=m.id,
                alliance_id=m.alliance_id,
                alliance_slug=m.alliance.route_slug if m.alliance else None,
                alliance_name=m.alliance.alliance_name if m.alliance else None,
                role=m.role,
                is_active=m.is_active,
            )
            for m in managers
        ],
    )
