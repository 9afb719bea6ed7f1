"""Tests for user accounts, login and role gating."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime

import pytest
from werkzeug.security import check_password_hash

from warehouse_admin import accounts, core_logic
from warehouse_admin.constants import ALL_VENDORS, UserRole

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "admin-pass-123"
LOGIN_TIME = datetime(2024, 4, 3, 7, 45, tzinfo=UTC)


def _vendor(email="vendor@example.com", vendor_number="V-100", password="vendor-pass"):
    return accounts.UserCommand(
        email=email, name="Vendor Person", role="vendor", vendor_number=vendor_number, password=password
    )


def _admin_id(context):
    return accounts.find_user_by_email(context, ADMIN_EMAIL).user_id


def test_add_user_hashes_password(runtime_context):
    user = accounts.add_user(runtime_context, _vendor())

    assert user.role == UserRole.VENDOR.value
    assert user.vendor_number == "V-100"
    assert user.password_hash != "vendor-pass"
    assert check_password_hash(user.password_hash, "vendor-pass")
    assert not user.is_suspended


def test_add_user_drops_vendor_number_for_staff(runtime_context):
    command = accounts.UserCommand(
        email="staff@example.com", name="Staff", role="staff", vendor_number="V-9", password="staff-pass"
    )

    assert accounts.add_user(runtime_context, command).vendor_number is None


def test_add_user_rejects_duplicate_email_ignoring_case(runtime_context):
    with pytest.raises(accounts.DuplicateEmailError):
        accounts.add_user(runtime_context, _vendor(email=ADMIN_EMAIL.upper()))


def test_add_user_validates_fields(runtime_context):
    command = accounts.UserCommand(email="nope", name="", role="vendor", vendor_number=None, password="short")

    with pytest.raises(core_logic.ValidationError) as excinfo:
        accounts.add_user(runtime_context, command)

    assert len(excinfo.value.errors) == 4


def test_add_user_rejects_unknown_role(runtime_context):
    with pytest.raises(core_logic.ValidationError):
        accounts.add_user(runtime_context, replace(_vendor(), role="owner"))


def test_is_email_unique_excludes_own_record(runtime_context):
    admin_id = _admin_id(runtime_context)

    assert not accounts.is_email_unique(runtime_context, ADMIN_EMAIL)
    assert accounts.is_email_unique(runtime_context, ADMIN_EMAIL, exclude_id=admin_id)
    assert accounts.is_email_unique(runtime_context, "new@example.com")


def test_login_stamps_last_login(runtime_context):
    session = accounts.login(runtime_context, ADMIN_EMAIL, ADMIN_PASSWORD, timestamp=LOGIN_TIME)

    assert session.is_authenticated
    assert session.user.last_login == LOGIN_TIME
    assert accounts.find_user_by_email(runtime_context, ADMIN_EMAIL).last_login == LOGIN_TIME


@pytest.mark.parametrize(
    ("email", "password"),
    [(ADMIN_EMAIL, "wrong-password"), ("ghost@example.com", ADMIN_PASSWORD)],
)
def test_login_failures_share_one_message(runtime_context, email, password):
    with pytest.raises(accounts.AuthenticationError, match="^Invalid credentials$"):
        accounts.login(runtime_context, email, password)


def test_login_refuses_suspended_account(runtime_context):
    user = accounts.add_user(runtime_context, _vendor())
    accounts.suspend_user(runtime_context, user.user_id)

    with pytest.raises(accounts.AuthenticationError, match="Account suspended"):
        accounts.login(runtime_context, "vendor@example.com", "vendor-pass")

    accounts.reactivate_user(runtime_context, user.user_id)
    assert accounts.login(runtime_context, "vendor@example.com", "vendor-pass").is_authenticated


def test_logout_returns_anonymous_session(runtime_context):
    session = accounts.login(runtime_context, ADMIN_EMAIL, ADMIN_PASSWORD)

    assert accounts.logout(session) is accounts.ANONYMOUS
    assert not accounts.ANONYMOUS.is_authenticated


def test_delete_last_admin_is_refused(runtime_context):
    with pytest.raises(accounts.LastAdminError):
        accounts.delete_user(runtime_context, _admin_id(runtime_context))


def test_delete_admin_allowed_when_another_remains(runtime_context):
    second = accounts.add_user(
        runtime_context,
        accounts.UserCommand(email="second@example.com", name="Second", role="admin", password="second-pass"),
    )

    accounts.delete_user(runtime_context, _admin_id(runtime_context))

    assert [user.user_id for user in accounts.list_users(runtime_context)] == [second.user_id]


def test_demoting_last_admin_is_refused(runtime_context):
    admin_id = _admin_id(runtime_context)
    command = accounts.UserCommand(email=ADMIN_EMAIL, name="Admin User", role="staff")

    with pytest.raises(accounts.LastAdminError):
        accounts.update_user(runtime_context, admin_id, command)


def test_update_user_rejects_taken_email(runtime_context):
    vendor = accounts.add_user(runtime_context, _vendor())

    with pytest.raises(accounts.DuplicateEmailError):
        accounts.update_user(runtime_context, vendor.user_id, replace(_vendor(), email=ADMIN_EMAIL))


def test_reset_user_password(runtime_context):
    vendor = accounts.add_user(runtime_context, _vendor())

    with pytest.raises(core_logic.ValidationError):
        accounts.reset_user_password(runtime_context, vendor.user_id, "short")
    accounts.reset_user_password(runtime_context, vendor.user_id, "brand-new-pass")

    assert accounts.login(runtime_context, "vendor@example.com", "brand-new-pass").is_authenticated


def test_filter_users_by_search_and_suspension(runtime_context):
    vendor = accounts.add_user(runtime_context, _vendor())
    accounts.suspend_user(runtime_context, vendor.user_id)

    assert [u.email for u in accounts.filter_users(runtime_context, search="V-100")] == ["vendor@example.com"]
    assert [u.email for u in accounts.filter_users(runtime_context, suspended=False)] == [ADMIN_EMAIL]


def test_allowed_vendor_numbers_by_role(runtime_context):
    admin = accounts.find_user_by_email(runtime_context, ADMIN_EMAIL)
    vendor = accounts.add_user(runtime_context, _vendor())
    all_access_vendor = accounts.add_user(
        runtime_context, _vendor(email="all@example.com", vendor_number=ALL_VENDORS)
    )

    assert accounts.allowed_vendor_numbers(admin) == [ALL_VENDORS]
    assert accounts.allowed_vendor_numbers(vendor) == ["V-100"]
    assert accounts.allowed_vendor_numbers(all_access_vendor) == [ALL_VENDORS]
    assert accounts.allowed_vendor_numbers(None) == []


def test_require_access_by_feature(runtime_context):
    vendor = accounts.add_user(runtime_context, _vendor())
    vendor_session = accounts.AuthSession(user=vendor)
    admin_session = accounts.AuthSession(user=accounts.find_user_by_email(runtime_context, ADMIN_EMAIL))

    accounts.require_access(vendor_session, "billings")
    accounts.require_access(admin_session, "users")
    with pytest.raises(accounts.AccessDeniedError):
        accounts.require_access(vendor_session, "transactions")
    with pytest.raises(accounts.AccessDeniedError, match="Login required"):
        accounts.require_access(accounts.ANONYMOUS, "dashboard")
    with pytest.raises(KeyError):
        accounts.require_access(admin_session, "teleport")


def test_has_role(runtime_context):
    admin = accounts.find_user_by_email(runtime_context, ADMIN_EMAIL)

    assert accounts.has_role(admin, [UserRole.ADMIN])
    assert not accounts.has_role(admin, ["staff", "vendor"])
    assert not accounts.has_role(None, [UserRole.ADMIN])
