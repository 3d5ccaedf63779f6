"""
Unit tests for the credential service: link, status, overview, unlink and validate.

Runs against the SQLite test database with a stubbed PnW transport.
"""

import pytest

from pnw_key_manager.constants import AuditAction, OwnerKind
from pnw_key_manager.db import AuditLog, User
from pnw_key_manager.exceptions import (
    AccessDeniedError,
    AlreadyLinkedElsewhereError,
    InvalidFormatError,
    InvalidOrExpiredKeyError,
    NotFoundError,
    ValidationError,
)
from pnw_key_manager.schemas.credential_schemas import LinkRequest, ValidateRequest
from pnw_key_manager.services.caller_service import load_caller
from pnw_key_manager.services.credential_service import STATUS_UNAVAILABLE, CredentialService
from pnw_key_manager.utils.encryption_utils import CredentialCipher, mask_secret
from tests.fixtures.factories import (
    AllianceAdminFactory,
    AllianceFactory,
    AllianceManagerFactory,
    SystemAdminFactory,
    UserFactory,
)
from tests.fixtures.pnw_payloads import (
    error_payload,
    pnw_response,
    usage_payload,
    validation_payload,
)


@pytest.fixture
def service(db_session, cipher, pnw_client):
    return CredentialService(cipher, pnw_client, session=db_session)


def _audit_actions(db_session):
    return [row.action for row in db_session.query(AuditLog).order_by(AuditLog.created_at).all()]


class TestLink:
    def test_end_to_end_link_then_status(self, service, db_session, cipher, api_key):
        user = UserFactory.create()
        caller = load_caller(db_session, user.id)

        result = service.link(caller, LinkRequest(api_key=api_key))

        assert result.success
        assert result.identity.id == 42
        assert result.identity.name == "Testland"
        assert result.usage.used == 10
        assert result.usage.max == 2000

        db_session.expire_all()
        stored = db_session.get(User, user.id)
        assert stored.pnw_api_key != api_key
        assert cipher.decrypt(stored.pnw_api_key) == api_key
        assert len(cipher.decrypt(stored.pnw_api_key)) == 24
        assert stored.pnw_nation_id == 42

        status = service.status(caller, OwnerKind.USER, user.id)
        assert status.is_linked is True
        assert status.masked_view == mask_secret(api_key)
        assert status.masked_view == "abcd****************EF01"
        assert status.usage.percentage == 0.5
        assert status.usage.is_near_limit is False
        assert status.identity.id == 42
        assert status.error is None

    def test_link_writes_audit_without_secret(self, service, db_session, api_key):
        user = UserFactory.create()
        service.link(load_caller(db_session, user.id), LinkRequest(api_key=api_key))

        entry = db_session.query(AuditLog).one()
        assert entry.action == AuditAction.API_KEY_LINKED.value
        assert entry.user_id == user.id
        assert entry.new_values["nationId"] == 42
        assert api_key not in str(entry.new_values)

    def test_relink_replaces_key(self, service, db_session, cipher, api_key):
        user = UserFactory.create()
        caller = load_caller(db_session, user.id)
        service.link(caller, LinkRequest(api_key=api_key))
        service.link(caller, LinkRequest(api_key="zyxwvu9876543210ZYXWVU98"))

        db_session.expire_all()
        stored = db_session.get(User, user.id)
        assert cipher.decrypt(stored.pnw_api_key) == "zyxwvu9876543210ZYXWVU98"

    def test_short_key_leaves_state_unchanged(self, service, db_session, transport):
        user = UserFactory.create()

        with pytest.raises(InvalidFormatError):
            service.link(load_caller(db_session, user.id), LinkRequest(api_key="short"))

        assert transport.calls == []
        db_session.expire_all()
        assert db_session.get(User, user.id).pnw_api_key is None
        assert _audit_actions(db_session) == []

    def test_invalid_upstream_key(self, service, db_session, transport, api_key):
        user = UserFactory.create()
        transport.validation = pnw_response(error_payload("Invalid API key"))

        with pytest.raises(InvalidOrExpiredKeyError):
            service.link(load_caller(db_session, user.id), LinkRequest(api_key=api_key))

        db_session.expire_all()
        assert db_session.get(User, user.id).pnw_api_key is None

    def test_denied_for_other_user(self, service, db_session, transport, api_key):
        user = UserFactory.create()
        victim = UserFactory.create()

        with pytest.raises(AccessDeniedError):
            service.link(
                load_caller(db_session, user.id),
                LinkRequest(api_key=api_key, owner_id=victim.id),
            )

        assert transport.calls == []

    @pytest.mark.parametrize("method", ["status", "unlink"])
    def test_unknown_other_user_is_denied_not_missing(self, service, db_session, method):
        user = UserFactory.create()

        with pytest.raises(AccessDeniedError) as exc_info:
            getattr(service, method)(
                load_caller(db_session, user.id), OwnerKind.USER, "no-such-user"
            )

        assert exc_info.value.status_code == 403

    def test_system_admin_sees_missing_user(self, service, db_session):
        admin = SystemAdminFactory.create()

        with pytest.raises(NotFoundError):
            service.status(load_caller(db_session, admin.id), OwnerKind.USER, "no-such-user")

    def test_system_admin_may_link_for_other_user(self, service, db_session, api_key):
        admin = SystemAdminFactory.create()
        target = UserFactory.create()

        service.link(load_caller(db_session, admin.id), LinkRequest(api_key=api_key, owner_id=target.id))

        db_session.expire_all()
        assert db_session.get(User, target.id).pnw_api_key is not None

    def test_already_linked_to_another_user(self, service, db_session, api_key):
        first = UserFactory.create()
        second = UserFactory.create()
        service.link(load_caller(db_session, first.id), LinkRequest(api_key=api_key))

        with pytest.raises(AlreadyLinkedElsewhereError) as exc_info:
            service.link(load_caller(db_session, second.id), LinkRequest(api_key=api_key))

        assert exc_info.value.status_code == 409
        db_session.expire_all()
        assert db_session.get(User, second.id).pnw_api_key is None

    def test_same_user_may_reuse_key_for_alliance(self, service, db_session, api_key):
        manager = AllianceAdminFactory.create()
        caller = load_caller(db_session, manager.user_id)

        service.link(caller, LinkRequest(api_key=api_key))
        result = service.link(
            caller,
            LinkRequest(
                api_key=api_key,
                owner_kind=OwnerKind.ALLIANCE_MANAGER,
                alliance_slug=manager.alliance.route_slug,
            ),
        )

        assert result.message == "Alliance API key linked successfully"
        assert _audit_actions(db_session) == [
            AuditAction.API_KEY_LINKED.value,
            AuditAction.ALLIANCE_API_KEY_LINKED.value,
        ]


class TestAllianceKeys:
    def test_viewer_cannot_link(self, service, db_session, api_key):
        manager = AllianceManagerFactory.create()

        with pytest.raises(AccessDeniedError):
            service.link(
                load_caller(db_session, manager.user_id),
                LinkRequest(
                    api_key=api_key,
                    owner_kind=OwnerKind.ALLIANCE_MANAGER,
                    owner_id=manager.id,
                ),
            )

    def test_viewer_can_read_status_of_admin_key(self, service, db_session, api_key):
        alliance = AllianceFactory.create()
        admin = AllianceAdminFactory.create(alliance=alliance)
        viewer = AllianceManagerFactory.create(alliance=alliance)
        service.link(
            load_caller(db_session, admin.user_id),
            LinkRequest(api_key=api_key, owner_kind=OwnerKind.ALLIANCE_MANAGER, owner_id=admin.id),
        )

        status = service.status(
            load_caller(db_session, viewer.user_id), OwnerKind.ALLIANCE_MANAGER, admin.id
        )

        assert status.is_linked
        assert status.alliance_slug == alliance.route_slug

    def test_outsider_cannot_read_status(self, service, db_session):
        manager = AllianceAdminFactory.create()
        outsider = UserFactory.create()

        with pytest.raises(AccessDeniedError):
            service.status(
                load_caller(db_session, outsider.id), OwnerKind.ALLIANCE_MANAGER, manager.id
            )

    def test_slug_without_grant_is_denied(self, service, db_session):
        alliance = AllianceFactory.create()
        user = UserFactory.create()

        with pytest.raises(AccessDeniedError):
            service.status(
                load_caller(db_session, user.id),
                OwnerKind.ALLIANCE_MANAGER,
                alliance_slug=alliance.route_slug,
            )

    def test_unknown_slug(self, service, db_session):
        user = UserFactory.create()
        with pytest.raises(NotFoundError):
            service.status(
                load_caller(db_session, user.id), OwnerKind.ALLIANCE_MANAGER, alliance_slug="nope"
            )

    def test_owner_or_slug_required(self, service, db_session):
        user = UserFactory.create()
        with pytest.raises(ValidationError):
            service.status(load_caller(db_session, user.id), OwnerKind.ALLIANCE_MANAGER)


class TestStatus:
    def test_not_linked_is_normal(self, service, db_session, transport):
        user = UserFactory.create()
        status = service.status(load_caller(db_session, user.id), OwnerKind.USER)

        assert status.is_linked is False
        assert status.masked_view is None
        assert status.usage is None
        assert status.error is None
        assert transport.calls == []

    def test_usage_failure_degrades(self, service, db_session, transport, api_key):
        user = UserFactory.create()
        caller = load_caller(db_session, user.id)
        service.link(caller, LinkRequest(api_key=api_key))
        transport.usage = pnw_response({}, status_code=503)

        status = service.status(caller, OwnerKind.USER)

        assert status.is_linked is True
        assert status.masked_view == mask_secret(api_key)
        assert status.usage is None
        assert status.error == STATUS_UNAVAILABLE

    def test_undecryptable_key_degrades(self, db_session, pnw_client, api_key):
        user = UserFactory.create()
        caller = load_caller(db_session, user.id)
        CredentialService(CredentialCipher("old-master-key"), pnw_client, session=db_session).link(
            caller, LinkRequest(api_key=api_key)
        )

        rotated = CredentialService(CredentialCipher("new-master-key"), pnw_client, session=db_session)
        status = rotated.status(caller, OwnerKind.USER)

        assert status.is_linked is True
        assert status.masked_view is None
        assert status.error == STATUS_UNAVAILABLE

    def test_near_limit_usage(self, service, db_session, transport, api_key):
        user = UserFactory.create()
        caller = load_caller(db_session, user.id)
        service.link(caller, LinkRequest(api_key=api_key))
        transport.usage = pnw_response(usage_payload(850, 1000))

        status = service.status(caller, OwnerKind.USER)

        assert status.usage.percentage == 85
        assert status.usage.is_near_limit is True

    def test_status_never_contains_plaintext(self, service, db_session, api_key):
        user = UserFactory.create()
        caller = load_caller(db_session, user.id)
        service.link(caller, LinkRequest(api_key=api_key))

        dumped = service.status(caller, OwnerKind.USER).model_dump_json(by_alias=True)
        assert api_key not in dumped


class TestOverview:
    def test_personal_and_alliance_entries(self, service, db_session, transport, api_key):
        manager = AllianceAdminFactory.create()
        caller = load_caller(db_session, manager.user_id)
        service.link(caller, LinkRequest(api_key=api_key))
        transport.usage = pnw_response({}, status_code=500)

        overview = service.overview(caller)

        assert overview.personal.is_linked is True
        assert overview.personal.error == STATUS_UNAVAILABLE
        assert len(overview.alliances) == 1
        assert overview.alliances[0].is_linked is False
        assert overview.alliances[0].alliance_name == manager.alliance.alliance_name


class TestUnlink:
    def test_unlink_twice_succeeds(self, service, db_session, api_key):
        user = UserFactory.create()
        caller = load_caller(db_session, user.id)
        service.link(caller, LinkRequest(api_key=api_key))

        first = service.unlink(caller, OwnerKind.USER)
        second = service.unlink(caller, OwnerKind.USER)

        assert first.success and first.was_linked
        assert second.success and not second.was_linked
        db_session.expire_all()
        assert db_session.get(User, user.id).pnw_api_key is None
        assert service.status(caller, OwnerKind.USER).is_linked is False

    def test_unlink_audits_previous_state(self, service, db_session):
        user = UserFactory.create()
        service.unlink(load_caller(db_session, user.id), OwnerKind.USER)

        entry = db_session.query(AuditLog).one()
        assert entry.action == AuditAction.API_KEY_REMOVED.value
        assert entry.old_values == {"hadApiKey": False}

    def test_viewer_cannot_unlink(self, service, db_session):
        manager = AllianceManagerFactory.create()
        with pytest.raises(AccessDeniedError):
            service.unlink(
                load_caller(db_session, manager.user_id), OwnerKind.ALLIANCE_MANAGER, manager.id
            )

    def test_alliance_admin_unlink_by_slug(self, service, db_session, api_key):
        manager = AllianceAdminFactory.create()
        caller = load_caller(db_session, manager.user_id)
        slug = manager.alliance.route_slug
        service.link(
            caller,
            LinkRequest(api_key=api_key, owner_kind=OwnerKind.ALLIANCE_MANAGER, alliance_slug=slug),
        )

        result = service.unlink(caller, OwnerKind.ALLIANCE_MANAGER, alliance_slug=slug)

        assert result.was_linked
        assert result.message == "Alliance API key removed successfully"


class TestValidate:
    def test_validate_does_not_write(self, service, db_session, transport, api_key):
        transport.validation = pnw_response(validation_payload(max_requests=5000))

        report = service.validate(ValidateRequest(api_key=api_key))

        assert report.identity.id == 42
        assert report.summary.daily_requests == 5000
        assert report.summary.is_vip is True
        assert report.summary.can_view_nation_data is True
        assert report.summary.can_view_alliance_data is True
        assert _audit_actions(db_session) == []

    def test_validate_short_key(self, service, transport):
        with pytest.raises(InvalidFormatError):
            service.validate(ValidateRequest(api_key="short"))
        assert transport.calls == []
