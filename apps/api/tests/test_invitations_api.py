"""
End-to-end tests for the invitation endpoints.

Mirrors the real flow: an owner invites, the invitee opens the link, accepts
with a password, and can log in with it.
"""
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from models import Invitation

ORIGIN = "http://localhost:3000"
PUBLIC = {"Origin": ORIGIN}
PASSWORD = "N3w!Officer"


def _invite(client, actor, email="new@staff.org", role="officer", **extra):
    return client.post("/v1/invitations", json={"email": email, "role": role, **extra}, headers=actor.headers)


def _accept(client, token, password=PASSWORD, full_name="Chen Mei"):
    return client.post(
        "/v1/invitations/accept",
        json={"token": token, "password": password, "full_name": full_name},
        headers=PUBLIC,
    )


def _parse(value):
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class TestInvitationFlow:
    def test_owner_invites_officer_end_to_end(self, client, owner):
        before = datetime.now(timezone.utc)
        response = _invite(client, owner)
        assert response.status_code == 201
        data = response.json()
        assert data["email"] == "new@staff.org"
        assert data["role"] == "officer"
        assert data["status"] == "pending"
        assert data["invited_by"] == str(owner.id)
        assert len(data["token"]) >= 43
        assert data["accept_url"].endswith(f"/es/login/accept-invitation?token={data['token']}")
        expires = _parse(data["expires_at"])
        assert before + timedelta(minutes=59) <= expires <= before + timedelta(minutes=61)

        lookup = client.get(f"/v1/invitations/token/{data['token']}")
        assert lookup.status_code == 200
        assert lookup.json()["email"] == "new@staff.org"
        assert lookup.json()["role"] == "officer"
        assert "token" not in lookup.json()

        accepted = _accept(client, data["token"])
        assert accepted.status_code == 201
        profile = accepted.json()
        assert profile["role"] == "officer"
        assert profile["email"] == "new@staff.org"
        assert profile["full_name"] == "Chen Mei"
        assert profile["invited_by"] == str(owner.id)

        again = _accept(client, data["token"])
        assert again.status_code == 404
        assert again.json()["error_code"] == "NOT_FOUND"

        assert client.get(f"/v1/invitations/token/{data['token']}").status_code == 404

        login = client.post(
            "/v1/auth/login",
            json={"email": "New@Staff.org", "password": PASSWORD},
            headers=PUBLIC,
        )
        assert login.status_code == 200
        token = login.json()["access_token"]
        me = client.get("/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["profile"]["role"] == "officer"

    def test_locale_controls_accept_link(self, client, owner):
        response = _invite(client, owner, locale="zh")
        assert response.status_code == 201
        assert "/zh/login/accept-invitation?token=" in response.json()["accept_url"]

    def test_delivery_is_scheduled(self, client, owner, monkeypatch):
        from services import invitation_service

        sent = []

        def fake_send(**kwargs):
            sent.append(kwargs)
            return True

        monkeypatch.setattr(invitation_service.email_service, "send_invitation", fake_send)
        response = _invite(client, owner)
        assert response.status_code == 201
        assert len(sent) == 1
        assert sent[0]["to_email"] == "new@staff.org"
        assert sent[0]["accept_url"] == response.json()["accept_url"]

    def test_delivery_failure_does_not_undo_invitation(self, client, db, owner, monkeypatch):
        from services import invitation_service

        def broken(**kwargs):
            raise ConnectionRefusedError("smtp down")

        monkeypatch.setattr(invitation_service.email_service, "send_invitation", broken)
        response = _invite(client, owner)
        assert response.status_code == 201
        assert db.query(Invitation).count() == 1


class TestInvitationRules:
    def test_officer_cannot_invite(self, client, officer):
        response = _invite(client, officer)
        assert response.status_code == 403

    def test_admin_cannot_invite_admin(self, client, db, admin):
        response = _invite(client, admin, role="admin")
        assert response.status_code == 403
        assert db.query(Invitation).count() == 0

    def test_owner_role_rejected_by_schema(self, client, owner):
        response = _invite(client, owner, role="owner")
        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR_ROLE"

    def test_duplicate_pending_conflict(self, client, owner):
        assert _invite(client, owner).status_code == 201
        response = _invite(client, owner, email="NEW@staff.org")
        assert response.status_code == 409
        assert response.json()["error_code"] == "CONFLICT"

    def test_existing_user_conflict(self, client, owner, officer):
        response = _invite(client, owner, email=officer.email)
        assert response.status_code == 409

    def test_reinvite_after_revoke(self, client, owner):
        first = _invite(client, owner).json()
        revoked = client.delete(f"/v1/invitations/{first['id']}", headers=owner.headers)
        assert revoked.status_code == 200
        assert _invite(client, owner).status_code == 201

    def test_reinvite_after_expiry(self, client, db, owner):
        first = _invite(client, owner).json()
        invitation = db.query(Invitation).filter(Invitation.token == first["token"]).one()
        invitation.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
        db.commit()
        assert _invite(client, owner).status_code == 201


class TestAcceptEdgeCases:
    def test_expired_token(self, client, db, owner):
        token = _invite(client, owner).json()["token"]
        invitation = db.query(Invitation).filter(Invitation.token == token).one()
        invitation.expires_at = datetime.now(timezone.utc) - timedelta(seconds=1)
        db.commit()

        assert client.get(f"/v1/invitations/token/{token}").status_code == 404
        assert _accept(client, token).status_code == 404

    def test_malformed_token_lookup_is_404(self, client):
        assert client.get("/v1/invitations/token/short").status_code == 404

    def test_unknown_token_accept_is_404(self, client):
        assert _accept(client, "a" * 43).status_code == 404

    def test_accept_requires_same_origin(self, client, owner):
        token = _invite(client, owner).json()["token"]
        response = client.post(
            "/v1/invitations/accept",
            json={"token": token, "password": PASSWORD, "full_name": "X"},
            headers={"Origin": "https://evil.example"},
        )
        assert response.status_code == 403
        assert client.get(f"/v1/invitations/token/{token}").status_code == 200

    def test_full_name_is_sanitized(self, client, owner):
        token = _invite(client, owner).json()["token"]
        response = _accept(client, token, full_name="<b>Chen</b> <script>x()</script>Mei")
        assert response.status_code == 201
        assert response.json()["full_name"] == "Chen Mei"

    def test_blank_full_name_rejected(self, client, owner):
        token = _invite(client, owner).json()["token"]
        response = _accept(client, token, full_name="<i></i>  ")
        assert response.status_code == 422


class TestListRevokeResend:
    def test_list_with_status_filter(self, client, owner):
        _invite(client, owner, email="a@staff.org")
        token = _invite(client, owner, email="b@staff.org").json()["token"]
        _accept(client, token)

        everything = client.get("/v1/invitations", headers=owner.headers).json()
        assert everything["pagination"] == {"total": 2, "limit": 50, "offset": 0}

        pending = client.get("/v1/invitations?status=pending", headers=owner.headers).json()
        assert [i["email"] for i in pending["data"]] == ["a@staff.org"]
        assert "token" not in pending["data"][0]

        accepted = client.get("/v1/invitations?status=accepted", headers=owner.headers).json()
        assert [i["status"] for i in accepted["data"]] == ["accepted"]

    def test_invalid_status_filter(self, client, owner):
        response = client.get("/v1/invitations?status=revoked", headers=owner.headers)
        assert response.status_code == 422

    def test_officer_cannot_list(self, client, officer):
        assert client.get("/v1/invitations", headers=officer.headers).status_code == 403

    def test_revoke_accepted_is_404(self, client, owner):
        created = _invite(client, owner).json()
        _accept(client, created["token"])
        response = client.delete(f"/v1/invitations/{created['id']}", headers=owner.headers)
        assert response.status_code == 404

    def test_revoke_unknown_and_malformed(self, client, owner):
        assert client.delete(f"/v1/invitations/{uuid4()}", headers=owner.headers).status_code == 404
        assert client.delete("/v1/invitations/123", headers=owner.headers).status_code == 422

    def test_revoke_audited(self, client, owner):
        created = _invite(client, owner).json()
        client.delete(f"/v1/invitations/{created['id']}", headers=owner.headers)
        logs = client.get("/v1/audit-logs?table_name=invitations&action=DELETE", headers=owner.headers).json()
        assert logs["pagination"]["total"] == 1
        assert logs["data"][0]["record_id"] == created["id"]

    def test_resend(self, client, owner, monkeypatch):
        from services import invitation_service

        sent = []
        monkeypatch.setattr(
            invitation_service.email_service, "send_invitation", lambda **kw: sent.append(kw) or True
        )
        created = _invite(client, owner).json()
        response = client.post(f"/v1/invitations/{created['id']}/resend?locale=en", headers=owner.headers)
        assert response.status_code == 202
        assert len(sent) == 2
        assert "/en/login/accept-invitation" in sent[1]["accept_url"]

    def test_resend_bad_locale(self, client, owner):
        created = _invite(client, owner).json()
        response = client.post(f"/v1/invitations/{created['id']}/resend?locale=fr", headers=owner.headers)
        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR_LOCALE"
