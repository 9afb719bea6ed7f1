"""User accounts, login and role-based access gating.

Passwords are hashed with :mod:`werkzeug.security` and compared locally. The
result only decides which features a caller may use from this tool; it is not
a security boundary around the workbook, which anyone with file access can
read.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable, List, Mapping, Optional, Union

from werkzeug.security import check_password_hash, generate_password_hash

from . import core_logic, data_manager, log
from .constants import ALL_VENDORS, MIN_PASSWORD_LENGTH, UserRole

ALL_ROLES = frozenset(UserRole)
BACK_OFFICE_ROLES = frozenset({UserRole.ADMIN, UserRole.STAFF})

# Feature name -> roles allowed to use it.
FEATURE_ROLES: Mapping[str, frozenset] = {
    "dashboard": ALL_ROLES,
    "products": ALL_ROLES,
    "catalog-admin": BACK_OFFICE_ROLES,
    "transactions": BACK_OFFICE_ROLES,
    "billings": ALL_ROLES,
    "billing-admin": BACK_OFFICE_ROLES,
    "reports": BACK_OFFICE_ROLES,
    "users": frozenset({UserRole.ADMIN}),
}


class DuplicateEmailError(core_logic.BusinessRuleViolation):
    """Raised when an email address is already used by another account."""


class LastAdminError(core_logic.BusinessRuleViolation):
    """Raised when a change would leave the workbook without an admin."""


class AuthenticationError(core_logic.BusinessRuleViolation):
    """Raised when a login attempt is rejected."""


class AccessDeniedError(core_logic.BusinessRuleViolation):
    """Raised when the current session may not use a feature."""


@dataclass(frozen=True)
class AuthSession:
    """The signed-in user, if any."""

    user: Optional[data_manager.UserRow] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None


ANONYMOUS = AuthSession()


@dataclass(frozen=True)
class UserCommand:
    """User intent for creating or editing an account."""

    email: str
    name: str
    role: Union[UserRole, str]
    vendor_number: Optional[str] = None
    password: Optional[str] = None
    timestamp: Optional[datetime] = None


def list_users(context: core_logic.RuntimeContext) -> List[data_manager.UserRow]:
    return list(data_manager.iter_users(context.workbook))


def get_user(context: core_logic.RuntimeContext, user_id: str) -> data_manager.UserRow:
    """Resolve a user by identifier.

    Raises:
        core_logic.MissingReferenceError: If ``user_id`` is unknown.
    """
    for user in list_users(context):
        if user.user_id == user_id:
            return user
    log.warning("User lookup failed for id '%s'", user_id)
    raise core_logic.MissingReferenceError(f"Unknown user id: {user_id}")


def find_user_by_email(context: core_logic.RuntimeContext, email: str) -> Optional[data_manager.UserRow]:
    needle = email.strip().lower()
    for user in list_users(context):
        if user.email.lower() == needle:
            return user
    return None


def is_email_unique(context: core_logic.RuntimeContext, email: str, exclude_id: Optional[str] = None) -> bool:
    """Return ``True`` when no other account uses ``email`` (case-insensitive)."""
    existing = find_user_by_email(context, email)
    return existing is None or existing.user_id == exclude_id


def filter_users(
    context: core_logic.RuntimeContext,
    *,
    search: Optional[str] = None,
    suspended: Optional[bool] = None,
) -> List[data_manager.UserRow]:
    """Return users matching ``search`` (name, email, role, vendor) and status."""
    needle = search.lower() if search else ""
    results = []
    for user in list_users(context):
        if suspended is not None and user.is_suspended != suspended:
            continue
        haystack = f"{user.name} {user.email} {user.role} {user.vendor_number or ''}".lower()
        if needle and needle not in haystack:
            continue
        results.append(user)
    return results


def _coerce_role(value: Union[UserRole, str]) -> UserRole:
    try:
        return UserRole(value.lower() if isinstance(value, str) else value)
    except ValueError as exc:
        raise core_logic.ValidationError([f"Unknown role: {value}"]) from exc


def _validate_user_command(command: UserCommand, *, validate_password: bool) -> UserRole:
    errors: List[str] = []
    role: Optional[UserRole] = None
    if not command.email or "@" not in command.email:
        errors.append("A valid email address is required")
    if not command.name or not command.name.strip():
        errors.append("Name is required")
    try:
        role = _coerce_role(command.role)
    except core_logic.ValidationError as exc:
        errors.extend(exc.errors)
    if role is UserRole.VENDOR and not command.vendor_number:
        errors.append("Vendor accounts need a vendor number")
    if validate_password and command.password is not None and len(command.password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if errors:
        log.warning("User validation failed: %s", "; ".join(errors))
        raise core_logic.ValidationError(errors)
    return role


def _admin_ids(users: Iterable[data_manager.UserRow]) -> set[str]:
    return {user.user_id for user in users if user.role == UserRole.ADMIN.value}


def add_user(context: core_logic.RuntimeContext, command: UserCommand) -> data_manager.UserRow:
    """Create an account. Only vendors keep a vendor number.

    Raises:
        core_logic.ValidationError: If a field is invalid.
        DuplicateEmailError: If the email is already registered.
    """
    role = _validate_user_command(command, validate_password=True)
    if not is_email_unique(context, command.email):
        log.warning("Rejected duplicate email '%s'", command.email)
        raise DuplicateEmailError("Email already exists")

    user = data_manager.UserRow(
        user_id=core_logic.generate_record_id(),
        email=command.email.strip(),
        name=command.name.strip(),
        role=role.value,
        vendor_number=command.vendor_number if role is UserRole.VENDOR else None,
        password_hash=generate_password_hash(command.password) if command.password else None,
        is_suspended=False,
        created_at=core_logic.resolve_timestamp(command.timestamp),
        last_login=None,
    )
    data_manager.append_user(context.workbook, user)
    log.info("Added %s account '%s'", user.role, user.email)
    return user


def update_user(context: core_logic.RuntimeContext, user_id: str, command: UserCommand) -> data_manager.UserRow:
    """Edit name, email, role and vendor number. Passwords are not touched.

    Raises:
        core_logic.MissingReferenceError: If the user is unknown.
        DuplicateEmailError: If the new email belongs to someone else.
        LastAdminError: If the last admin would be demoted.
    """
    current = get_user(context, user_id)
    role = _validate_user_command(command, validate_password=False)
    if command.email.lower() != current.email.lower() and not is_email_unique(context, command.email, user_id):
        log.warning("Rejected duplicate email '%s'", command.email)
        raise DuplicateEmailError("Email already exists")
    if current.role == UserRole.ADMIN.value and role is not UserRole.ADMIN:
        if not _admin_ids(list_users(context)) - {user_id}:
            log.warning("Refused to demote the last admin '%s'", current.email)
            raise LastAdminError("Cannot demote the last admin account")

    updated = replace(
        current,
        email=command.email.strip(),
        name=command.name.strip(),
        role=role.value,
        vendor_number=command.vendor_number if role is UserRole.VENDOR else None,
    )
    data_manager.replace_user(context.workbook, updated)
    log.info("Updated account '%s'", updated.email)
    return updated


def delete_user(context: core_logic.RuntimeContext, user_id: str) -> None:
    """Remove an account unless no admin would remain afterwards.

    Raises:
        core_logic.MissingReferenceError: If the user is unknown.
        LastAdminError: If this is the last admin.
    """
    user = get_user(context, user_id)
    if not _admin_ids(list_users(context)) - {user_id}:
        log.warning("Refused to delete the last admin '%s'", user.email)
        raise LastAdminError("Cannot delete the last admin account")
    data_manager.delete_row(context.workbook, data_manager.USERS_SHEET, "UserID", user_id)
    log.info("Deleted account '%s'", user.email)


def _set_suspended(context: core_logic.RuntimeContext, user_id: str, suspended: bool) -> data_manager.UserRow:
    updated = replace(get_user(context, user_id), is_suspended=suspended)
    data_manager.replace_user(context.workbook, updated)
    log.info("%s account '%s'", "Suspended" if suspended else "Reactivated", updated.email)
    return updated


def suspend_user(context: core_logic.RuntimeContext, user_id: str) -> data_manager.UserRow:
    return _set_suspended(context, user_id, True)


def reactivate_user(context: core_logic.RuntimeContext, user_id: str) -> data_manager.UserRow:
    return _set_suspended(context, user_id, False)


def reset_user_password(context: core_logic.RuntimeContext, user_id: str, new_password: str) -> data_manager.UserRow:
    """Replace a user's password hash.

    Raises:
        core_logic.ValidationError: If the password is too short.
    """
    if not new_password or len(new_password) < MIN_PASSWORD_LENGTH:
        raise core_logic.ValidationError([f"Password must be at least {MIN_PASSWORD_LENGTH} characters"])
    updated = replace(get_user(context, user_id), password_hash=generate_password_hash(new_password))
    data_manager.replace_user(context.workbook, updated)
    log.info("Reset password for '%s'", updated.email)
    return updated


def login(
    context: core_logic.RuntimeContext,
    email: str,
    password: str,
    *,
    timestamp: Optional[datetime] = None,
) -> AuthSession:
    """Check credentials and return a session for the matching account.

    Unknown emails and wrong passwords share one message so the response
    does not reveal which accounts exist.

    Raises:
        AuthenticationError: On bad credentials or a suspended account.
    """
    user = find_user_by_email(context, email)
    if user is None or not user.password_hash:
        log.warning("Login failed for '%s'", email)
        raise AuthenticationError("Invalid credentials")
    if user.is_suspended:
        log.warning("Login refused for suspended account '%s'", email)
        raise AuthenticationError("Account suspended. Please contact administrator.")
    if not check_password_hash(user.password_hash, password):
        log.warning("Login failed for '%s'", email)
        raise AuthenticationError("Invalid credentials")

    signed_in = replace(user, last_login=core_logic.resolve_timestamp(timestamp))
    data_manager.replace_user(context.workbook, signed_in)
    log.info("User '%s' logged in", signed_in.email)
    return AuthSession(user=signed_in)


def logout(session: AuthSession) -> AuthSession:
    if session.user is not None:
        log.info("User '%s' logged out", session.user.email)
    return ANONYMOUS


def has_role(user: Optional[data_manager.UserRow], roles: Iterable[Union[UserRole, str]]) -> bool:
    if user is None:
        return False
    return user.role in {UserRole(role).value for role in roles}


def allowed_vendor_numbers(user: Optional[data_manager.UserRow]) -> List[str]:
    """Vendor numbers whose billings ``user`` may see; ``["ALL"]`` means every vendor."""
    if user is None:
        return []
    if user.role in (UserRole.ADMIN.value, UserRole.STAFF.value):
        return [ALL_VENDORS]
    if user.role == UserRole.VENDOR.value:
        if user.vendor_number == ALL_VENDORS:
            return [ALL_VENDORS]
        return [user.vendor_number] if user.vendor_number else []
    return []


def require_access(session: AuthSession, feature: str) -> None:
    """Ensure the session's role may use ``feature``.

    Raises:
        AccessDeniedError: If nobody is signed in or the role is not allowed.
        KeyError: If ``feature`` is not a known feature name.
    """
    roles = FEATURE_ROLES[feature]
    if not session.is_authenticated:
        raise AccessDeniedError("Login required")
    if not has_role(session.user, roles):
        log.warning("User '%s' denied access to '%s'", session.user.email, feature)
        raise AccessDeniedError(f"Role '{session.user.role}' may not access {feature}")
