"""
Tests for the invitation lifecycle (service layer).

pending -> accepted | expired | revoked; accepted and expired are terminal.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

from core.exceptions import ConflictError, ForbiddenError, NotFoundError, ProfileProvisioningError
from core.guard import AuthUser
from models import AuditLogEntry, AuthAccount, Invitation, Profile, ensure_utc
from services import invitation_service
from services.identity_provider import LocalIdentityProvider

PASSWORD = "N3w!Officer"


def _invite(db, actor, email="new@staff.org", role="officer"):
    return invitation_service.create_invitation(db, actor=actor, email=email, role=role)


def _expire(db, invitation):
    invitation.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
    db.commit()


class TestCreateInvitation:
    def test_creates_pending_invitation(self, db, owner):
        before = datetime.now(timezone.utc)
        invitation = _invite(db, owner.actor, email="  New@Staff.org ")

        assert invitation.email == "new@staff.org"
        assert invitation.role == "officer"
        assert invitation.invited_by == owner.id
        assert invitation.accepted_at is None
        assert invitation.status() == "pending"
        assert len(invitation.token) >= 43
        expires = ensure_utc(invitation.expires_at)
        assert before + timedelta(minutes=59) <= expires <= before + timedelta(minutes=61)

    def test_tokens_are_unique(self, db, owner):
        a = _invite(db, owner.actor, email="a@staff.org")
        b = _invite(db, owner.actor, email="b@staff.org")
        assert a.token != b.token

    def test_writes_audit_entry_without_token(self, db, owner):
        invitation = _invite(db, owner.actor)
        entry = db.query(AuditLogEntry).filter(AuditLogEntry.table_name == "invitations").one()
        assert entry.action == "INSERT"
        assert entry.record_id == str(invitation.id)
        assert entry.user_id == owner.id
        assert "token" not in entry.changes
        assert invitation.token not in str(entry.changes)

    @pytest.mark.parametrize(
        "inviter,role",
        [("admin", "admin"), ("officer", "officer"), ("owner", "owner"), ("admin", "owner")],
    )
    def test_role_rules(self, db, staff_factory, inviter, role):
        actor = staff_factory(inviter).actor
        with pytest.raises(ForbiddenError):
            _invite(db, actor, role=role)
        assert db.query(Invitation).count() == 0

    def test_admin_invites_officer(self, db, admin):
        assert _invite(db, admin.actor).role == "officer"

    def test_existing_profile_conflict(self, db, owner, officer):
        with pytest.raises(ConflictError):
            _invite(db, owner.actor, email=officer.email.upper())

    def test_pending_duplicate_conflict(self, db, owner):
        _invite(db, owner.actor)
        with pytest.raises(ConflictError):
            _invite(db, owner.actor, email="NEW@staff.org")
        assert db.query(Invitation).count() == 1

    def test_new_invitation_after_expiry(self, db, owner):
        first = _invite(db, owner.actor)
        _expire(db, first)
        second = _invite(db, owner.actor)
        assert second.id != first.id
        assert db.query(Invitation).count() == 1

    def test_new_invitation_after_revoke(self, db, owner):
        first = _invite(db, owner.actor)
        invitation_service.revoke_invitation(db, actor=owner.actor, invitation_id=first.id)
        second = _invite(db, owner.actor)
        assert second.token != first.token


class TestTokenLookup:
    def test_pending_found(self, db, owner):
        invitation = _invite(db, owner.actor)
        found = invitation_service.get_pending_invitation_by_token(db, invitation.token)
        assert found.id == invitation.id

    def test_unknown_token(self, db):
        with pytest.raises(NotFoundError):
            invitation_service.get_pending_invitation_by_token(db, "x" * 43)

    def test_expired_is_not_found(self, db, owner):
        invitation = _invite(db, owner.actor)
        _expire(db, invitation)
        with pytest.raises(NotFoundError):
            invitation_service.get_pending_invitation_by_token(db, invitation.token)

    def test_expiry_boundary(self, db, owner):
        invitation = _invite(db, owner.actor)
        expires = ensure_utc(invitation.expires_at)
        with pytest.raises(NotFoundError):
            invitation_service.get_pending_invitation_by_token(db, invitation.token, now=expires)
        assert invitation.status(expires) == "expired"
        assert invitation.status(expires - timedelta(seconds=1)) == "pending"


class TestAcceptInvitation:
    def test_accept_provisions_profile(self, db, owner):
        invitation = _invite(db, owner.actor, role="admin")
        profile = invitation_service.accept_invitation(
            db, LocalIdentityProvider(db), token=invitation.token, password=PASSWORD, full_name="Li Wei"
        )

        assert profile.role == "admin"
        assert profile.email == "new@staff.org"
        assert profile.invited_by == owner.id
        assert profile.is_active is True

        db.expire_all()
        stored = db.query(Invitation).filter(Invitation.id == invitation.id).one()
        assert stored.accepted_at is not None
        assert stored.accepted_by == profile.id
        assert stored.status() == "accepted"
        assert db.query(AuthAccount).filter(AuthAccount.id == profile.id).count() == 1

        actions = {(e.table_name, e.action) for e in db.query(AuditLogEntry).all()}
        assert ("invitations", "UPDATE") in actions
        assert ("profiles", "INSERT") in actions

    def test_second_accept_is_not_found(self, db, owner):
        invitation = _invite(db, owner.actor)
        identity = LocalIdentityProvider(db)
        invitation_service.accept_invitation(db, identity, token=invitation.token, password=PASSWORD, full_name="A")
        with pytest.raises(NotFoundError):
            invitation_service.accept_invitation(
                db, identity, token=invitation.token, password=PASSWORD, full_name="B"
            )
        assert db.query(Profile).filter(Profile.email == "new@staff.org").count() == 1

    def test_expired_cannot_be_accepted(self, db, owner):
        invitation = _invite(db, owner.actor)
        _expire(db, invitation)
        with pytest.raises(NotFoundError):
            invitation_service.accept_invitation(
                db, LocalIdentityProvider(db), token=invitation.token, password=PASSWORD, full_name="A"
            )
        assert db.query(AuthAccount).filter(AuthAccount.email == "new@staff.org").count() == 0

    def test_revoked_cannot_be_accepted(self, db, owner):
        invitation = _invite(db, owner.actor)
        invitation_service.revoke_invitation(db, actor=owner.actor, invitation_id=invitation.id)
        with pytest.raises(NotFoundError):
            invitation_service.accept_invitation(
                db, LocalIdentityProvider(db), token=invitation.token, password=PASSWORD, full_name="A"
            )

    def test_profile_failure_keeps_invitation_pending(self, db, owner):
        invitation = _invite(db, owner.actor)
        identity = MagicMock()
        # Colliding id makes the profile insert fail at commit
        identity.create_account.return_value = AuthUser(id=owner.id, email="new@staff.org")

        with pytest.raises(ProfileProvisioningError):
            invitation_service.accept_invitation(db, identity, token=invitation.token, password=PASSWORD, full_name="A")

        identity.delete_account.assert_called_once_with(owner.id)
        db.expire_all()
        stored = db.query(Invitation).filter(Invitation.id == invitation.id).one()
        assert stored.accepted_at is None
        assert stored.status() == "pending"

    def test_claim_lost_to_concurrent_acceptance(self, db, owner, monkeypatch):
        invitation = _invite(db, owner.actor)
        lookup = invitation_service.get_pending_invitation_by_token

        def lookup_then_lose_race(db, token, now=None):
            pending = lookup(db, token, now)
            # Another request claims the row between the read and the conditional UPDATE
            db.query(Invitation).filter(Invitation.id == pending.id).update(
                {Invitation.accepted_at: datetime.now(timezone.utc)}, synchronize_session=False
            )
            db.commit()
            return pending

        monkeypatch.setattr(invitation_service, "get_pending_invitation_by_token", lookup_then_lose_race)
        identity = MagicMock(wraps=LocalIdentityProvider(db))

        with pytest.raises(NotFoundError):
            invitation_service.accept_invitation(db, identity, token=invitation.token, password=PASSWORD, full_name="A")

        identity.create_account.assert_not_called()
        assert db.query(Profile).filter(Profile.email == "new@staff.org").count() == 0
        assert db.query(AuthAccount).filter(AuthAccount.email == "new@staff.org").count() == 0

    def test_existing_account_conflict(self, db, owner):
        invitation = _invite(db, owner.actor)
        identity = LocalIdentityProvider(db)
        identity.create_account("new@staff.org", "0ther!Passw0rd")
        db.commit()
        with pytest.raises(ConflictError):
            invitation_service.accept_invitation(db, identity, token=invitation.token, password=PASSWORD, full_name="A")
        db.expire_all()
        assert db.query(Invitation).filter(Invitation.id == invitation.id).one().accepted_at is None

    def test_retry_reuses_account_left_by_failed_acceptance(self, db, owner):
        invitation = _invite(db, owner.actor)
        identity = LocalIdentityProvider(db)
        leftover = identity.create_account("new@staff.org", PASSWORD)
        db.commit()

        profile = invitation_service.accept_invitation(
            db, identity, token=invitation.token, password=PASSWORD, full_name="A"
        )
        assert profile.id == leftover.id
        assert profile.role == "officer"
        assert db.query(AuthAccount).filter(AuthAccount.email == "new@staff.org").count() == 1


class TestRevokeAndResend:
    def test_revoke_deletes_row_and_audits(self, db, owner):
        invitation = _invite(db, owner.actor)
        invitation_service.revoke_invitation(db, actor=owner.actor, invitation_id=invitation.id)
        assert db.query(Invitation).count() == 0
        entry = db.query(AuditLogEntry).filter(AuditLogEntry.action == "DELETE").one()
        assert entry.record_id == str(invitation.id)

    def test_revoke_accepted_is_not_found(self, db, owner):
        invitation = _invite(db, owner.actor)
        profile = invitation_service.accept_invitation(
            db, LocalIdentityProvider(db), token=invitation.token, password=PASSWORD, full_name="A"
        )
        with pytest.raises(NotFoundError):
            invitation_service.revoke_invitation(db, actor=owner.actor, invitation_id=invitation.id)
        assert db.query(Profile).filter(Profile.id == profile.id).count() == 1

    def test_admin_cannot_revoke_admin_invitation(self, db, owner, admin):
        invitation = _invite(db, owner.actor, role="admin")
        with pytest.raises(ForbiddenError):
            invitation_service.revoke_invitation(db, actor=admin.actor, invitation_id=invitation.id)

    def test_revoke_expired_is_allowed(self, db, owner):
        invitation = _invite(db, owner.actor)
        _expire(db, invitation)
        invitation_service.revoke_invitation(db, actor=owner.actor, invitation_id=invitation.id)
        assert db.query(Invitation).count() == 0

    def test_resend_requires_pending(self, db, owner):
        invitation = _invite(db, owner.actor)
        assert invitation_service.resend_invitation(db, actor=owner.actor, invitation_id=invitation.id).id == invitation.id
        _expire(db, invitation)
        with pytest.raises(NotFoundError):
            invitation_service.resend_invitation(db, actor=owner.actor, invitation_id=invitation.id)


class TestDelivery:
    def test_accept_url(self):
        url = invitation_service.build_accept_url("abc", "zh")
        assert url == "http://localhost:3000/zh/login/accept-invitation?token=abc"
        assert invitation_service.build_accept_url("abc").startswith("http://localhost:3000/es/")

    def test_delivery_failure_never_raises(self, monkeypatch):
        def boom(**kwargs):
            raise OSError("smtp down")

        monkeypatch.setattr(invitation_service.email_service, "send_invitation", boom)
        assert invitation_service.deliver_invitation(
            "a@staff.org", "tok", "officer", datetime.now(timezone.utc)
        ) is False

    def test_disabled_email_reports_not_sent(self):
        assert invitation_service.deliver_invitation(
            "a@staff.org", "tok", "officer", datetime.now(timezone.utc)
        ) is False


class TestListInvitations:
    def test_status_filters(self, db, owner):
        pending = _invite(db, owner.actor, email="p@staff.org")
        expired = _invite(db, owner.actor, email="e@staff.org")
        _expire(db, expired)
        accepted = _invite(db, owner.actor, email="a@staff.org")
        invitation_service.accept_invitation(
            db, LocalIdentityProvider(db), token=accepted.token, password=PASSWORD, full_name="A"
        )

        def ids(status):
            rows, total = invitation_service.list_invitations(db, status=status, limit=50, offset=0)
            assert total == len(rows)
            return {r.id for r in rows}

        assert ids("pending") == {pending.id}
        assert ids("expired") == {expired.id}
        assert ids("accepted") == {accepted.id}
        assert ids(None) == {pending.id, expired.id, accepted.id}
