"""
Tests for Password Policy Validation

Ensures password strength requirements are enforced for the password chosen
when an invitation is accepted.
"""
import pytest
from core.password_policy import validate_password, get_password_requirements_text


class TestPasswordValidation:
    """Tests for validate_password function"""

    def test_valid_strong_password(self):
        """Should accept a password meeting all requirements"""
        valid, errors = validate_password("SecureP@ss123")
        assert valid is True
        assert len(errors) == 0

    def test_valid_complex_password(self):
        """Should accept a complex password"""
        valid, errors = validate_password("My$uper$ecure#Pass99!")
        assert valid is True
        assert len(errors) == 0

    def test_reject_short_password(self):
        """Should reject password shorter than 8 characters"""
        valid, errors = validate_password("Ab1@xyz")
        assert valid is False
        assert any("at least 8 characters" in e for e in errors)

    def test_reject_long_password(self):
        """Should reject password longer than 72 bytes (bcrypt limit)"""
        long_pass = "A" * 70 + "a1@"  # 73 chars
        valid, errors = validate_password(long_pass)
        assert valid is False
        assert any("72 bytes" in e for e in errors)

    def test_reject_no_uppercase(self):
        valid, errors = validate_password("secure@pass123")
        assert valid is False
        assert any("uppercase" in e for e in errors)

    def test_reject_no_lowercase(self):
        valid, errors = validate_password("SECURE@PASS123")
        assert valid is False
        assert any("lowercase" in e for e in errors)

    def test_reject_no_digit(self):
        valid, errors = validate_password("Secure@Password")
        assert valid is False
        assert any("digit" in e for e in errors)

    def test_reject_no_special_char(self):
        valid, errors = validate_password("SecurePass123")
        assert valid is False
        assert any("special character" in e for e in errors)

    @pytest.mark.parametrize("pwd", ["Password123!", "CentroCultural1!", "Admin123!"])
    def test_reject_common_password(self, pwd):
        """Blocklist is case-insensitive and applies even to complex-looking passwords"""
        valid, errors = validate_password(pwd)
        assert valid is False
        assert any("too common" in e for e in errors)

    def test_reject_non_string(self):
        valid, errors = validate_password(None)
        assert valid is False
        assert errors == ["Password must be a string"]

    def test_multiple_errors_returned(self):
        """Should return all applicable errors"""
        valid, errors = validate_password("abc")
        assert valid is False
        assert len(errors) > 1

    def test_edge_case_exactly_8_chars(self):
        valid, errors = validate_password("Ab1@cdef")
        assert valid is True

    def test_edge_case_exactly_72_chars(self):
        pass72 = "A" * 68 + "a1@b"
        valid, errors = validate_password(pass72)
        assert valid is True

    def test_reject_multibyte_password_over_72_bytes(self):
        """72 characters but 140 bytes: bcrypt would refuse to hash it"""
        pwd = "Aa1!" + "é" * 68
        assert len(pwd) == 72
        valid, errors = validate_password(pwd)
        assert valid is False
        assert any("72 bytes" in e for e in errors)

    def test_multibyte_password_within_72_bytes(self):
        valid, errors = validate_password("Contraseña#2024")
        assert valid is True

    def test_special_characters_variety(self):
        special_chars = "!@#$%^&*()_+-=[]{}|;':\",./<>?`~"
        for char in special_chars[:10]:
            pwd = f"Secure1{char}pass"
            valid, errors = validate_password(pwd)
            assert not any("special character" in e for e in errors)


class TestPasswordRequirementsText:
    """Tests for get_password_requirements_text function"""

    def test_returns_requirements(self):
        text = get_password_requirements_text()
        assert "8-72 bytes" in text
        assert "uppercase" in text.lower()
        assert "lowercase" in text.lower()
        assert "digit" in text.lower()
        assert "special character" in text.lower()


class TestPasswordPolicyOnAcceptance:
    """The accept endpoint rejects weak passwords before any account is created"""

    def test_accept_weak_password_rejected(self, client, owner):
        created = client.post(
            "/v1/invitations",
            json={"email": "weak@staff.org", "role": "officer"},
            headers=owner.headers,
        )
        assert created.status_code == 201

        response = client.post(
            "/v1/invitations/accept",
            json={"token": created.json()["token"], "password": "weakpass", "full_name": "Weak"},
            headers={"Origin": owner.headers["Origin"]},
        )
        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR_PASSWORD"
        assert "uppercase" in response.json()["detail"]

        # Invitation is still usable
        lookup = client.get(f"/v1/invitations/token/{created.json()['token']}")
        assert lookup.status_code == 200

    def test_accept_multibyte_password_over_byte_limit_rejected(self, client, owner):
        created = client.post(
            "/v1/invitations",
            json={"email": "accents@staff.org", "role": "officer"},
            headers=owner.headers,
        )
        assert created.status_code == 201

        response = client.post(
            "/v1/invitations/accept",
            json={"token": created.json()["token"], "password": "Aa1!" + "é" * 68, "full_name": "Acentos"},
            headers={"Origin": owner.headers["Origin"]},
        )
        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR_PASSWORD"
        assert "72 bytes" in response.json()["detail"]
