from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from records.errors import ValidationError


class Role(str, Enum):
    ADMIN = "Admin"
    DOCTOR = "Doctor"


class ScanType(str, Enum):
    CT = "CT"
    XRAY = "X-Ray"


class ScanStatus(str, Enum):
    PENDING = "Pending"
    REVIEWED = "Reviewed"
    FOLLOW_UP = "Requires Follow-up"


def utc_timestamp() -> str:
    """ISO-8601 UTC with milliseconds and a trailing Z, e.g. 2025-10-01T09:30:00.000Z"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def coerce_enum(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {enum_cls.__name__} '{value}' (expected one of: {allowed})")


# snake_case attribute -> camelCase key stored on disk
_STORAGE_KEYS = {
    "patient_id": "patientId",
    "contact_number": "contactNumber",
    "created_at": "createdAt",
    "created_by": "createdBy",
    "patient_name": "patientName",
    "scan_type": "scanType",
    "image_data": "imageData",
    "uploaded_at": "uploadedAt",
    "reviewed_by": "reviewedBy",
    "reviewed_at": "reviewedAt",
}
_ATTRIBUTE_NAMES = {v: k for k, v in _STORAGE_KEYS.items()}


class _Record:
    # fields whose values are enums, set per subclass
    ENUM_FIELDS: Dict[str, type] = {}
    REQUIRED = ()

    def to_dict(self) -> Dict[str, Any]:
        out = {}
        for name, value in asdict(self).items():
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            out[_STORAGE_KEYS.get(name, name)] = value
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]):
        if not isinstance(data, dict):
            raise ValidationError(f"{cls.__name__} record must be an object, got {type(data).__name__}")
        kwargs = {_ATTRIBUTE_NAMES.get(k, k): v for k, v in data.items()}
        missing = [name for name in cls.REQUIRED if kwargs.get(name) is None]
        if missing:
            raise ValidationError(f"{cls.__name__} record is missing: {', '.join(missing)}")
        for name, enum_cls in cls.ENUM_FIELDS.items():
            if name in kwargs:
                kwargs[name] = coerce_enum(enum_cls, kwargs[name])
        known = cls.__dataclass_fields__
        # unknown keys written by other versions are dropped
        kwargs = {k: v for k, v in kwargs.items() if k in known}
        return cls(**kwargs)


@dataclass
class Patient(_Record):
    id: str
    name: str
    age: int
    patient_id: str          # display code, P-00001
    contact_number: str
    created_at: str
    gender: Optional[str] = None
    notes: Optional[str] = None

    REQUIRED = ("id", "name", "age", "patient_id", "contact_number", "created_at")


@dataclass
class Scan(_Record):
    id: str
    patient_id: str          # -> Patient.id
    patient_name: str        # cached copy of Patient.name
    scan_type: ScanType
    image_data: str          # data URL
    status: ScanStatus
    uploaded_at: str
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[str] = None
    notes: Optional[str] = None

    ENUM_FIELDS = {"scan_type": ScanType, "status": ScanStatus}
    REQUIRED = ("id", "patient_id", "patient_name", "scan_type", "image_data", "status", "uploaded_at")


@dataclass
class Admin(_Record):
    id: str
    username: str
    password: str            # digest, never plain text
    role: Role
    created_at: str
    created_by: Optional[str] = None

    ENUM_FIELDS = {"role": Role}
    REQUIRED = ("id", "username", "password", "role", "created_at")


@dataclass(frozen=True)
class Session(_Record):
    """Who is logged in. Carries no password material."""
    id: str
    username: str
    role: Role

    ENUM_FIELDS = {"role": Role}
    REQUIRED = ("id", "username", "role")

    @classmethod
    def for_account(cls, admin: Admin) -> "Session":
        return cls(id=admin.id, username=admin.username, role=admin.role)
