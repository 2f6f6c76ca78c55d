import pytest

from records.errors import ValidationError
from records.models import Admin, Role, Scan, ScanStatus, ScanType, Session, utc_timestamp


def test_scan_to_dict_uses_stored_field_names():
    scan = Scan(
        id="SCAN-1",
        patient_id="PAT-1",
        patient_name="Jane Doe",
        scan_type=ScanType.XRAY,
        image_data="data:x",
        status=ScanStatus.FOLLOW_UP,
        uploaded_at="2025-10-01T09:00:00.000Z",
    )
    assert scan.to_dict() == {
        "id": "SCAN-1",
        "patientId": "PAT-1",
        "patientName": "Jane Doe",
        "scanType": "X-Ray",
        "imageData": "data:x",
        "status": "Requires Follow-up",
        "uploadedAt": "2025-10-01T09:00:00.000Z",
    }


def test_from_dict_reads_browser_records():
    admin = Admin.from_dict({
        "id": "ADMIN-1700000000000",
        "username": "admin",
        "password": "1a2b",
        "role": "Admin",
        "createdAt": "2025-10-01T09:00:00.000Z",
        "createdBy": "System",
        "legacyField": True,
    })
    assert admin.role is Role.ADMIN
    assert admin.created_by == "System"


def test_from_dict_validates_enums():
    with pytest.raises(ValidationError):
        Session.from_dict({"id": "1", "username": "x", "role": "Root"})


def test_from_dict_requires_fields():
    with pytest.raises(ValidationError):
        Admin.from_dict({"id": "1", "username": "x", "role": "Admin"})


def test_session_for_account():
    admin = Admin("ADMIN-1", "doc", "ff", Role.DOCTOR, utc_timestamp())
    assert Session.for_account(admin) == Session("ADMIN-1", "doc", Role.DOCTOR)


def test_timestamp_shape():
    stamp = utc_timestamp()
    assert stamp.endswith("Z")
    assert len(stamp) == len("2025-10-01T09:00:00.000Z")
