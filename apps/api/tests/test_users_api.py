"""
Tests for staff user management (/v1/users).
"""
from uuid import uuid4

import pytest

from core.exceptions import ConflictError
from models import AuditLogEntry, AuthAccount, HskExamSession, Invitation, Profile
from services.identity_provider import LocalIdentityProvider
from services.user_service import bootstrap_owner


class TestListUsers:
    def test_owner_lists_everyone(self, client, owner, admin, officer):
        response = client.get("/v1/users", headers=owner.headers)
        assert response.status_code == 200
        body = response.json()
        assert body["pagination"]["total"] == 3
        assert {u["email"] for u in body["data"]} == {owner.email, admin.email, officer.email}

    def test_filters(self, client, owner, staff_factory):
        staff_factory("officer", is_active=False)
        staff_factory("officer")
        response = client.get("/v1/users?role=officer&is_active=false", headers=owner.headers)
        assert response.json()["pagination"]["total"] == 1
        assert response.json()["data"][0]["is_active"] is False

    def test_invalid_filters(self, client, owner):
        assert client.get("/v1/users?role=superuser", headers=owner.headers).status_code == 422
        assert client.get("/v1/users?is_active=maybe", headers=owner.headers).status_code == 422

    def test_pagination_is_clamped(self, client, owner):
        response = client.get("/v1/users?limit=10000&offset=-3", headers=owner.headers)
        assert response.json()["pagination"] == {"total": 1, "limit": 500, "offset": 0}

    def test_officer_forbidden(self, client, officer):
        assert client.get("/v1/users", headers=officer.headers).status_code == 403

    def test_get_one(self, client, admin, officer):
        response = client.get(f"/v1/users/{officer.id}", headers=admin.headers)
        assert response.status_code == 200
        assert response.json()["role"] == "officer"
        assert client.get(f"/v1/users/{uuid4()}", headers=admin.headers).status_code == 404
        assert client.get("/v1/users/not-a-uuid", headers=admin.headers).status_code == 422


class TestUpdateUser:
    def test_admin_renames_officer(self, client, db, admin, officer):
        response = client.patch(f"/v1/users/{officer.id}", json={"full_name": "Wang Fang"}, headers=admin.headers)
        assert response.status_code == 200
        assert response.json()["full_name"] == "Wang Fang"

        entry = db.query(AuditLogEntry).filter(AuditLogEntry.action == "UPDATE").one()
        assert entry.changes["full_name"]["to"] == "Wang Fang"

    def test_owner_promotes_officer(self, client, owner, officer):
        response = client.patch(f"/v1/users/{officer.id}", json={"role": "admin"}, headers=owner.headers)
        assert response.status_code == 200
        assert response.json()["role"] == "admin"

    def test_admin_cannot_promote_to_admin(self, client, admin, officer):
        response = client.patch(f"/v1/users/{officer.id}", json={"role": "admin"}, headers=admin.headers)
        assert response.status_code == 403

    def test_admin_cannot_touch_owner(self, client, owner, admin):
        response = client.patch(f"/v1/users/{owner.id}", json={"full_name": "Nope"}, headers=admin.headers)
        assert response.status_code == 403
        response = client.patch(f"/v1/users/{owner.id}", json={"is_active": False}, headers=admin.headers)
        assert response.status_code == 403

    def test_no_self_role_change(self, client, owner):
        response = client.patch(f"/v1/users/{owner.id}", json={"role": "admin"}, headers=owner.headers)
        assert response.status_code == 400
        assert response.json()["error_code"] == "BUSINESS_RULE"

    def test_no_self_deactivation(self, client, admin):
        response = client.patch(f"/v1/users/{admin.id}", json={"is_active": False}, headers=admin.headers)
        assert response.status_code == 400

    def test_self_rename_allowed(self, client, admin):
        response = client.patch(f"/v1/users/{admin.id}", json={"full_name": "Admin Li"}, headers=admin.headers)
        assert response.status_code == 200

    def test_deactivation_takes_effect_immediately(self, client, owner, admin):
        response = client.patch(f"/v1/users/{admin.id}", json={"is_active": False}, headers=owner.headers)
        assert response.status_code == 200
        assert client.get("/v1/users", headers=admin.headers).status_code == 403

    def test_email_is_not_editable(self, client, owner, officer):
        response = client.patch(f"/v1/users/{officer.id}", json={"email": "x@staff.org"}, headers=owner.headers)
        assert response.status_code == 422
        assert response.json()["detail"] == "Unknown field: email"

    def test_empty_update_rejected(self, client, owner, officer):
        assert client.patch(f"/v1/users/{officer.id}", json={}, headers=owner.headers).status_code == 422


class TestDeleteUser:
    def test_owner_cannot_delete_self(self, client, db, owner):
        response = client.delete(f"/v1/users/{owner.id}", headers=owner.headers)
        assert response.status_code == 400
        assert response.json()["error_code"] == "BUSINESS_RULE"
        assert db.query(Profile).filter(Profile.id == owner.id).count() == 1

    def test_admin_cannot_delete(self, client, admin, officer):
        response = client.delete(f"/v1/users/{officer.id}", headers=admin.headers)
        assert response.status_code == 403

    def test_owner_deletes_admin_and_clears_references(self, client, db, owner, admin, staff_factory):
        officer = staff_factory("officer", invited_by=admin.id)
        db.add(Invitation(email="later@staff.org", role="officer", token="t" * 43,
                          invited_by=admin.id, expires_at=admin.profile.created_at))
        db.add(HskExamSession(exam_date=admin.profile.created_at, available_slots=3, created_by=admin.id))
        db.commit()

        response = client.delete(f"/v1/users/{admin.id}", headers=owner.headers)
        assert response.status_code == 200

        db.expire_all()
        assert db.query(Profile).filter(Profile.id == admin.id).count() == 0
        assert db.query(AuthAccount).filter(AuthAccount.id == admin.id).count() == 0
        assert db.query(Profile).filter(Profile.id == officer.id).one().invited_by is None
        assert db.query(Invitation).one().invited_by is None
        assert db.query(HskExamSession).one().created_by is None

        entry = db.query(AuditLogEntry).filter(AuditLogEntry.action == "DELETE").one()
        assert entry.table_name == "profiles"
        assert entry.record_id == str(admin.id)
        assert entry.user_id == owner.id

    def test_deleted_user_session_is_dead(self, client, owner, officer):
        client.delete(f"/v1/users/{officer.id}", headers=owner.headers)
        assert client.get("/v1/profiles/me", headers=officer.headers).status_code == 401

    def test_delete_unknown(self, client, owner):
        assert client.delete(f"/v1/users/{uuid4()}", headers=owner.headers).status_code == 404


class TestBootstrapOwner:
    def test_creates_owner_that_can_log_in(self, client, db):
        profile = bootstrap_owner(
            db,
            LocalIdentityProvider(db),
            email=" Owner@Example.org ",
            password="Str0ng!Passw0rd",
            full_name="Ana Li",
        )
        assert profile.role == "owner"
        assert profile.email == "owner@example.org"

        response = client.post(
            "/v1/auth/login",
            json={"email": "owner@example.org", "password": "Str0ng!Passw0rd"},
            headers={"Origin": "http://localhost:3000"},
        )
        assert response.status_code == 200

    def test_second_bootstrap_for_same_email_conflicts(self, db, owner):
        with pytest.raises(ConflictError):
            bootstrap_owner(
                db, LocalIdentityProvider(db), email=owner.email, password="Str0ng!Passw0rd", full_name="X"
            )
