"""
Role-based capability sets and the access-control decision table.

The role of the requester is resolved once, at the request boundary, into a
``Capabilities`` object. Services ask that object what the requester may do
instead of branching on role strings themselves.

Decision table for reading clinical data:

- admin: always allowed to read; never allowed to write clinical data.
- patient: allowed iff the data belongs to them. Visibility never blocks a patient.
- provider, author of the record: always allowed, whatever the connection state.
- provider, not the author: allowed iff ``check_access`` holds (approved
  connection and approved verification) and the record is not hidden from them.
"""
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Optional

from ..models.user import UserRole
from .errors import AccessDeniedError

# Permission constants
PERM_READ_OWN_RECORDS = "read_own_records"
PERM_SET_RECORD_VISIBILITY = "set_record_visibility"
PERM_RESPOND_CONNECTIONS = "respond_connections"
PERM_REQUEST_CONNECTIONS = "request_connections"
PERM_AUTHOR_CLINICAL_DATA = "author_clinical_data"
PERM_READ_CONNECTED_RECORDS = "read_connected_records"
PERM_READ_ALL_RECORDS = "read_all_records"
PERM_MANAGE_PROVIDERS = "manage_providers"
PERM_VIEW_AUDIT_LOGS = "view_audit_logs"
PERM_VIEW_SYSTEM_STATS = "view_system_stats"

# Role permission matrix
ROLE_PERMISSIONS: dict = {
    UserRole.PATIENT: {
        PERM_READ_OWN_RECORDS,
        PERM_SET_RECORD_VISIBILITY,
        PERM_RESPOND_CONNECTIONS,
    },
    UserRole.PROVIDER: {
        PERM_REQUEST_CONNECTIONS,
        PERM_AUTHOR_CLINICAL_DATA,
        PERM_READ_CONNECTED_RECORDS,
    },
    UserRole.ADMIN: {
        PERM_READ_ALL_RECORDS,
        PERM_MANAGE_PROVIDERS,
        PERM_VIEW_AUDIT_LOGS,
        PERM_VIEW_SYSTEM_STATS,
    },
}


def has_permission(role: str, permission: str) -> bool:
    """Check if a role has a specific permission."""
    return permission in ROLE_PERMISSIONS.get(role, set())


@dataclass(frozen=True)
class AccessTarget:
    """What a decision is about: a patient's data, optionally one authored record."""
    patient_id: str
    author_id: Optional[str] = None
    is_hidden: bool = False
    hidden_from: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def for_patient(cls, patient_id: str) -> "AccessTarget":
        return cls(patient_id=patient_id)

    @classmethod
    def for_record(cls, record) -> "AccessTarget":
        return cls(
            patient_id=record.patient_id,
            author_id=record.provider_id,
            is_hidden=bool(record.is_hidden),
            hidden_from=frozenset(record.hidden_from or ()),
        )

    @classmethod
    def for_authored(cls, patient_id: str, author_id: str) -> "AccessTarget":
        """Consultations and documents: authored, without a visibility override."""
        return cls(patient_id=patient_id, author_id=author_id)

    def hidden_from_provider(self, provider_id: str) -> bool:
        # A listed provider is always hidden. ``is_hidden`` with no list hides
        # the record from every non-author provider; with a list, only the listed.
        if provider_id in self.hidden_from:
            return True
        return self.is_hidden and not self.hidden_from


ConnectionChecker = Callable[[str, str], bool]


class Capabilities:
    role: Optional[str] = None

    def __init__(self, user_id: str, check_access: Optional[ConnectionChecker] = None):
        self.user_id = user_id
        self._check_access = check_access or (lambda provider_id, patient_id: False)

    def has(self, permission: str) -> bool:
        return has_permission(self.role, permission)

    # -- decisions ----------------------------------------------------------

    def can_access_record(self, target: AccessTarget) -> bool:
        return False

    def can_mutate_record(self, target: AccessTarget) -> bool:
        return False

    def can_approve_connection(self, connection) -> bool:
        return False

    def can_view_patient(self, patient_id: str) -> bool:
        """Patient-level clinical data that is not tied to a single authored item."""
        return False

    def can_write_for_patient(self, patient_id: str) -> bool:
        return False

    def can_set_visibility(self, target: AccessTarget) -> bool:
        return False

    # -- enforcing wrappers -------------------------------------------------

    def ensure_access_record(self, target: AccessTarget) -> None:
        if not self.can_access_record(target):
            raise AccessDeniedError()

    def ensure_mutate_record(self, target: AccessTarget) -> None:
        if not self.can_mutate_record(target):
            raise AccessDeniedError()

    def ensure_view_patient(self, patient_id: str) -> None:
        if not self.can_view_patient(patient_id):
            raise AccessDeniedError()

    def ensure_write_for_patient(self, patient_id: str) -> None:
        if not self.can_write_for_patient(patient_id):
            raise AccessDeniedError()

    def ensure_permission(self, permission: str) -> None:
        if not self.has(permission):
            raise AccessDeniedError()


class PatientCapabilities(Capabilities):
    role = UserRole.PATIENT

    def can_access_record(self, target: AccessTarget) -> bool:
        return target.patient_id == self.user_id

    def can_approve_connection(self, connection) -> bool:
        return connection.patient_id == self.user_id

    def can_view_patient(self, patient_id: str) -> bool:
        return patient_id == self.user_id

    def can_set_visibility(self, target: AccessTarget) -> bool:
        return target.patient_id == self.user_id


class ProviderCapabilities(Capabilities):
    role = UserRole.PROVIDER

    def is_author(self, target: AccessTarget) -> bool:
        return target.author_id is not None and target.author_id == self.user_id

    def can_access_record(self, target: AccessTarget) -> bool:
        if self.is_author(target):
            return True
        if not self._check_access(self.user_id, target.patient_id):
            return False
        return not target.hidden_from_provider(self.user_id)

    def can_mutate_record(self, target: AccessTarget) -> bool:
        return self.is_author(target)

    def can_view_patient(self, patient_id: str) -> bool:
        return self._check_access(self.user_id, patient_id)

    def can_write_for_patient(self, patient_id: str) -> bool:
        return self._check_access(self.user_id, patient_id)


class AdminCapabilities(Capabilities):
    role = UserRole.ADMIN

    def can_access_record(self, target: AccessTarget) -> bool:
        return True

    def can_view_patient(self, patient_id: str) -> bool:
        return True


_CAPABILITY_CLASSES = {
    UserRole.PATIENT: PatientCapabilities,
    UserRole.PROVIDER: ProviderCapabilities,
    UserRole.ADMIN: AdminCapabilities,
}


def capabilities_for(user, db=None) -> Capabilities:
    """Build the capability set for an authenticated user."""
    cls = _CAPABILITY_CLASSES.get(user.role)
    if cls is None:
        raise AccessDeniedError()
    checker = None
    if cls is ProviderCapabilities and db is not None:
        from ..services.connections import check_access
        checker = lambda provider_id, patient_id: check_access(db, provider_id, patient_id)  # noqa: E731
    return cls(user.id, checker)
