"""Unit tests for auth/service.py -- the account lifecycle.

Covers:
  - register persists an unverified CUSTOMER with a 6-digit code and returns a
    token for that user; duplicates conflict without touching the store
  - verify_email needs the exact stored code, and only once
  - resend overwrites the code so the old one stops working
  - login rules: unverified customers refused, unverified admins admitted
  - forgot/reset password share the single pending code
  - notification failures never fail the primary operation
  - administrative helpers used by the CLI and the users API
"""

from __future__ import annotations

import pytest

from auth.errors import AuthError, ErrorKind
from auth.models import Claims, Role
from auth.notifications import NotificationKind
from auth.passwords import verify_password
from auth.service import AuthService, codes_match


class TestCodesMatch:
    def test_equal_codes_match(self) -> None:
        assert codes_match("123456", "123456") is True

    def test_missing_stored_code_never_matches(self) -> None:
        assert codes_match(None, "") is False
        assert codes_match(None, "123456") is False

    def test_match_is_exact_string_equality(self) -> None:
        assert codes_match("000123", "123") is False
        assert codes_match("123456", " 123456") is False
        assert codes_match("123456", "123456 ") is False


class TestRegister:
    def test_persists_unverified_customer_with_code(self, service: AuthService, store, tokens) -> None:
        result = service.register("a@x.com", "pw123456", "A")

        saved = store.find_by_email("a@x.com")
        assert saved is not None
        assert saved.role is Role.CUSTOMER
        assert saved.is_verified is False
        assert saved.pending_code is not None
        assert len(saved.pending_code) == 6 and saved.pending_code.isdigit()
        assert saved.hashed_password != "pw123456"
        assert verify_password("pw123456", saved.hashed_password)

        assert result.user is not None and result.user.id == saved.id
        assert tokens.verify(result.token) == Claims(subject=saved.id, email="a@x.com", role=Role.CUSTOMER)

    def test_sends_welcome_with_stored_code(self, service: AuthService, store, notifier) -> None:
        service.register("a@x.com", "pw123456", "A")
        assert notifier.kinds_for("a@x.com") == [NotificationKind.welcome]
        assert notifier.last_code("a@x.com") == store.find_by_email("a@x.com").pending_code

    def test_duplicate_email_conflicts_without_mutation(self, service: AuthService, store, notifier) -> None:
        service.register("a@x.com", "pw123456", "A")
        before = store.find_by_email("a@x.com")

        with pytest.raises(AuthError) as exc_info:
            service.register("a@x.com", "different-pw", "Someone Else")
        assert exc_info.value.kind is ErrorKind.conflict
        assert exc_info.value.status_code == 409

        after = store.find_by_email("a@x.com")
        assert after.name == before.name
        assert after.hashed_password == before.hashed_password
        assert after.pending_code == before.pending_code
        assert store.count_users() == 1
        assert len(notifier.sent) == 1

    def test_email_is_not_case_folded(self, service: AuthService, store) -> None:
        service.register("a@x.com", "pw123456", "A")
        service.register("A@X.com", "pw123456", "A2")
        assert store.count_users() == 2

    def test_delivery_failure_does_not_fail_registration(self, offline_service: AuthService, store) -> None:
        result = offline_service.register("a@x.com", "pw123456", "A")
        assert result.token
        assert store.find_by_email("a@x.com").pending_code is not None


class TestVerifyEmail:
    def test_exact_code_verifies_and_clears_it(self, service: AuthService, store, tokens) -> None:
        service.register("a@x.com", "pw123456", "A")
        code = store.find_by_email("a@x.com").pending_code

        result = service.verify_email("a@x.com", code)

        saved = store.find_by_email("a@x.com")
        assert saved.is_verified is True
        assert saved.pending_code is None
        assert result.user.is_verified is True
        assert tokens.verify(result.token).subject == saved.id

    def test_repeat_with_same_code_is_bad_request(self, service: AuthService, store) -> None:
        service.register("a@x.com", "pw123456", "A")
        code = store.find_by_email("a@x.com").pending_code
        service.verify_email("a@x.com", code)

        with pytest.raises(AuthError) as exc_info:
            service.verify_email("a@x.com", code)
        assert exc_info.value.kind is ErrorKind.bad_request
        assert exc_info.value.message == "Email is already verified."

    def test_wrong_code_is_bad_request_and_keeps_state(self, service: AuthService, store) -> None:
        service.register("a@x.com", "pw123456", "A")
        code = store.find_by_email("a@x.com").pending_code
        wrong = "999999" if code != "999999" else "100000"

        with pytest.raises(AuthError) as exc_info:
            service.verify_email("a@x.com", wrong)
        assert exc_info.value.kind is ErrorKind.bad_request

        saved = store.find_by_email("a@x.com")
        assert saved.is_verified is False
        assert saved.pending_code == code

    def test_code_with_dropped_leading_zeros_is_rejected(self, service: AuthService, store) -> None:
        user = service.register("a@x.com", "pw123456", "A").user
        store.update(user.id, pending_code="000123")

        with pytest.raises(AuthError):
            service.verify_email("a@x.com", "123")
        assert service.verify_email("a@x.com", "000123").user.is_verified is True

    def test_no_stored_code_rejects_empty_input(self, service: AuthService, make_user) -> None:
        make_user("b@x.com", pending_code=None)
        with pytest.raises(AuthError) as exc_info:
            service.verify_email("b@x.com", "")
        assert exc_info.value.kind is ErrorKind.bad_request

    def test_unknown_email_is_not_found(self, service: AuthService) -> None:
        with pytest.raises(AuthError) as exc_info:
            service.verify_email("ghost@x.com", "123456")
        assert exc_info.value.kind is ErrorKind.not_found
        assert exc_info.value.status_code == 404


class TestResendVerification:
    def test_resend_replaces_code(self, service: AuthService, store, notifier) -> None:
        """register -> resend -> original code fails -> new code verifies."""
        service.register("a@x.com", "pw123456", "A")
        original = notifier.last_code("a@x.com")

        # Guard against the one-in-900000 chance that the fresh code repeats.
        for _ in range(5):
            service.resend_verification("a@x.com")
            if notifier.last_code("a@x.com") != original:
                break
        fresh = notifier.last_code("a@x.com")
        assert fresh != original
        assert store.find_by_email("a@x.com").pending_code == fresh

        with pytest.raises(AuthError) as exc_info:
            service.verify_email("a@x.com", original)
        assert exc_info.value.kind is ErrorKind.bad_request

        result = service.verify_email("a@x.com", fresh)
        assert result.user.is_verified is True

    def test_sends_verification_kind(self, service: AuthService, notifier) -> None:
        service.register("a@x.com", "pw123456", "A")
        service.resend_verification("a@x.com")
        assert notifier.kinds_for("a@x.com") == [NotificationKind.welcome, NotificationKind.verification]

    def test_already_verified_is_bad_request(self, service: AuthService, make_user) -> None:
        make_user("b@x.com", is_verified=True)
        with pytest.raises(AuthError) as exc_info:
            service.resend_verification("b@x.com")
        assert exc_info.value.kind is ErrorKind.bad_request

    def test_unknown_email_is_not_found(self, service: AuthService) -> None:
        with pytest.raises(AuthError) as exc_info:
            service.resend_verification("ghost@x.com")
        assert exc_info.value.kind is ErrorKind.not_found

    def test_delivery_failure_still_stores_new_code(self, offline_service: AuthService, make_user, store) -> None:
        make_user("b@x.com", pending_code="111111")
        result = offline_service.resend_verification("b@x.com")
        assert result.message == "Verification code sent to your email."
        assert store.find_by_email("b@x.com").pending_code is not None


class TestLogin:
    def test_verified_customer_gets_token(self, service: AuthService, make_user, tokens) -> None:
        user = make_user("c@x.com", is_verified=True)
        result = service.login("c@x.com", "pw123456")
        assert tokens.verify(result.token) == Claims.for_user(user)
        assert result.user.id == user.id

    def test_unverified_customer_is_unauthorized(self, service: AuthService, make_user) -> None:
        make_user("c@x.com", is_verified=False)
        with pytest.raises(AuthError) as exc_info:
            service.login("c@x.com", "pw123456")
        assert exc_info.value.kind is ErrorKind.unauthorized
        assert exc_info.value.message == "Please verify your email before logging in."

    @pytest.mark.parametrize("role", [Role.COURIER, Role.FARMER, Role.RETAILER])
    def test_other_unverified_roles_are_refused(self, service: AuthService, make_user, role: Role) -> None:
        make_user("r@x.com", role=role, is_verified=False)
        with pytest.raises(AuthError) as exc_info:
            service.login("r@x.com", "pw123456")
        assert exc_info.value.kind is ErrorKind.unauthorized

    @pytest.mark.parametrize("role", [Role.MAIN_ADMIN, Role.STALL_ADMIN])
    def test_unverified_admin_roles_are_exempt(self, service: AuthService, make_user, tokens, role: Role) -> None:
        make_user("admin@x.com", role=role, is_verified=False)
        result = service.login("admin@x.com", "pw123456")
        assert tokens.verify(result.token).role is role

    def test_wrong_password_is_unauthorized(self, service: AuthService, make_user) -> None:
        make_user("c@x.com", is_verified=True)
        with pytest.raises(AuthError) as exc_info:
            service.login("c@x.com", "not-the-password")
        assert exc_info.value.kind is ErrorKind.unauthorized
        assert exc_info.value.message == "Invalid credentials."

    def test_unknown_email_is_unauthorized_with_same_message(self, service: AuthService) -> None:
        with pytest.raises(AuthError) as exc_info:
            service.login("ghost@x.com", "pw123456")
        assert exc_info.value.kind is ErrorKind.unauthorized
        assert exc_info.value.message == "Invalid credentials."

    def test_login_does_not_change_state(self, service: AuthService, make_user, store) -> None:
        user = make_user("c@x.com", is_verified=True, pending_code="123456")
        service.login("c@x.com", "pw123456")
        after = store.find_by_id(user.id)
        assert after.pending_code == "123456"
        assert after.hashed_password == user.hashed_password


class TestPasswordReset:
    def test_forgot_then_reset_changes_password(self, service: AuthService, make_user, notifier, store) -> None:
        make_user("c@x.com", is_verified=True)
        service.forgot_password("c@x.com")
        assert notifier.kinds_for("c@x.com") == [NotificationKind.password_reset]

        service.reset_password("c@x.com", notifier.last_code("c@x.com"), "brand-new-pw")

        saved = store.find_by_email("c@x.com")
        assert saved.pending_code is None
        assert verify_password("brand-new-pw", saved.hashed_password)
        assert service.login("c@x.com", "brand-new-pw").token
        with pytest.raises(AuthError):
            service.login("c@x.com", "pw123456")

    def test_forgot_works_for_unverified_users(self, service: AuthService, make_user, store) -> None:
        make_user("c@x.com", is_verified=False)
        service.forgot_password("c@x.com")
        assert store.find_by_email("c@x.com").pending_code is not None

    def test_reset_with_wrong_code_is_bad_request(self, service: AuthService, make_user, store) -> None:
        user = make_user("c@x.com", is_verified=True)
        store.update(user.id, pending_code="424242")

        with pytest.raises(AuthError) as exc_info:
            service.reset_password("c@x.com", "242424", "brand-new-pw")
        assert exc_info.value.kind is ErrorKind.bad_request
        assert verify_password("pw123456", store.find_by_email("c@x.com").hashed_password)

    def test_reset_without_pending_code_is_bad_request(self, service: AuthService, make_user) -> None:
        make_user("c@x.com", is_verified=True)
        with pytest.raises(AuthError) as exc_info:
            service.reset_password("c@x.com", "", "brand-new-pw")
        assert exc_info.value.kind is ErrorKind.bad_request

    def test_forgot_overwrites_verification_code(self, service: AuthService, store, notifier) -> None:
        service.register("a@x.com", "pw123456", "A")
        store.update(store.find_by_email("a@x.com").id, pending_code="135790")
        service.forgot_password("a@x.com")

        with pytest.raises(AuthError):
            service.verify_email("a@x.com", "135790")
        assert service.verify_email("a@x.com", notifier.last_code("a@x.com")).user.is_verified

    def test_unknown_email_is_not_found(self, service: AuthService) -> None:
        with pytest.raises(AuthError) as exc_info:
            service.forgot_password("ghost@x.com")
        assert exc_info.value.kind is ErrorKind.not_found
        with pytest.raises(AuthError) as exc_info:
            service.reset_password("ghost@x.com", "123456", "brand-new-pw")
        assert exc_info.value.kind is ErrorKind.not_found

    def test_delivery_failure_does_not_fail_forgot(self, offline_service: AuthService, make_user) -> None:
        make_user("c@x.com", is_verified=True)
        assert offline_service.forgot_password("c@x.com").message == "Password reset code sent to your email."


class TestAdministration:
    def test_mark_verified(self, service: AuthService, make_user, store) -> None:
        make_user("c@x.com", pending_code="123456")
        result = service.mark_verified("c@x.com")
        assert result.user.is_verified is True
        assert store.find_by_email("c@x.com").pending_code is None

    def test_mark_verified_is_idempotent(self, service: AuthService, make_user) -> None:
        make_user("c@x.com", is_verified=True)
        assert service.mark_verified("c@x.com").message == "User is already verified."

    def test_set_password_needs_no_code(self, service: AuthService, make_user, store) -> None:
        make_user("c@x.com")
        service.set_password("c@x.com", "another-pw")
        assert verify_password("another-pw", store.find_by_email("c@x.com").hashed_password)

    def test_change_password_checks_current(self, service: AuthService, make_user, store) -> None:
        user = make_user("c@x.com", is_verified=True)
        with pytest.raises(AuthError) as exc_info:
            service.change_password(user.id, "wrong-current", "another-pw")
        assert exc_info.value.kind is ErrorKind.bad_request

        service.change_password(user.id, "pw123456", "another-pw")
        assert verify_password("another-pw", store.find_by_id(user.id).hashed_password)

    def test_change_role(self, service: AuthService, make_user, store) -> None:
        user = make_user("c@x.com")
        result = service.change_role(user.id, Role.FARMER)
        assert result.user.role is Role.FARMER
        assert store.find_by_id(user.id).role is Role.FARMER

    def test_change_role_for_unknown_user_is_not_found(self, service: AuthService) -> None:
        with pytest.raises(AuthError) as exc_info:
            service.change_role("0" * 32, Role.FARMER)
        assert exc_info.value.kind is ErrorKind.not_found

    def test_token_keeps_old_role_after_change(self, service: AuthService, make_user, tokens) -> None:
        """Issued tokens are not revoked; they carry the role they were signed with."""
        user = make_user("c@x.com", is_verified=True)
        token = service.login("c@x.com", "pw123456").token
        service.change_role(user.id, Role.MAIN_ADMIN)
        assert tokens.verify(token).role is Role.CUSTOMER
