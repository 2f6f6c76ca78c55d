import pytest

from records.errors import AuthenticationError, ConflictError, ValidationError
from records.models import Role
from store.credentials import hash_password, verify_password


def test_reset_seeds_two_accounts(store):
    admins = store.admins.list()
    assert [(a.username, a.role) for a in admins] == [("admin", Role.ADMIN), ("doctor", Role.DOCTOR)]
    assert all(a.created_by == "System" for a in admins)
    assert admins[0].password == hash_password("admin123")


def test_authenticate_default_admin(store):
    admin = store.admins.authenticate("admin", "admin123")
    assert admin.username == "admin"
    assert admin.role == Role.ADMIN


def test_authenticate_failures_look_the_same(store):
    with pytest.raises(AuthenticationError) as wrong_password:
        store.admins.authenticate("admin", "wrong")
    with pytest.raises(AuthenticationError) as unknown_user:
        store.admins.authenticate("ghost", "x")
    assert str(wrong_password.value) == str(unknown_user.value)
    assert wrong_password.value.__cause__ is None
    assert unknown_user.value.__cause__ is None


def test_authenticate_does_not_open_session(store):
    store.admins.authenticate("admin", "admin123")
    assert store.get_current_user() is None


def test_usernames_are_case_sensitive(store):
    with pytest.raises(AuthenticationError):
        store.admins.authenticate("Admin", "admin123")
    store.admins.create("Admin", "pw", Role.DOCTOR)
    assert store.admins.authenticate("Admin", "pw").role == Role.DOCTOR


def test_create_hashes_password_and_keeps_order(store):
    created = store.admins.create("nurse", "secret", "Doctor", created_by="admin")
    assert created.password != "secret"
    assert verify_password("secret", created.password)
    assert created.created_by == "admin"
    assert created.id.startswith("ADMIN-")
    assert [a.username for a in store.admins.list()] == ["admin", "doctor", "nurse"]


def test_create_generates_distinct_ids(store):
    a = store.admins.create("a1", "x", Role.DOCTOR)
    b = store.admins.create("a2", "x", Role.DOCTOR)
    assert a.id != b.id


def test_create_rejects_duplicate_username(store):
    with pytest.raises(ConflictError):
        store.admins.create("admin", "other", Role.ADMIN)
    assert len(store.admins.list()) == 2


def test_create_rejects_unknown_role(store):
    with pytest.raises(ValidationError):
        store.admins.create("bob", "x", "Nurse")


def test_update_rehashes_password(store):
    doctor = store.admins.find_by_username("doctor")
    updated = store.admins.update(doctor.id, password="newpass")
    assert updated.password == hash_password("newpass")
    assert store.admins.authenticate("doctor", "newpass").id == doctor.id


def test_update_ignores_immutable_fields(store):
    doctor = store.admins.find_by_username("doctor")
    updated = store.admins.update(doctor.id, id="HIJACK", created_at="1999", role=Role.ADMIN)
    assert updated.id == doctor.id
    assert updated.created_at == doctor.created_at
    assert updated.role == Role.ADMIN
    assert store.admins.find_by_id(doctor.id).role == Role.ADMIN


def test_update_missing_account_returns_none(store):
    assert store.admins.update("ADMIN-missing", role=Role.DOCTOR) is None


def test_update_rejects_taken_username(store):
    doctor = store.admins.find_by_username("doctor")
    with pytest.raises(ConflictError):
        store.admins.update(doctor.id, username="admin")
    # keeping your own name is fine
    assert store.admins.update(doctor.id, username="doctor").username == "doctor"


def test_update_rejects_unknown_field(store):
    doctor = store.admins.find_by_username("doctor")
    with pytest.raises(ValidationError):
        store.admins.update(doctor.id, email="x@example.com")


def test_delete(store):
    assert store.admins.delete("ADMIN-missing") is False
    assert len(store.admins.list()) == 2

    doctor = store.admins.find_by_username("doctor")
    assert store.admins.delete(doctor.id) is True
    assert len(store.admins.list()) == 1
    assert store.admins.find_by_id(doctor.id) is None


def test_delete_does_not_touch_patients(store, jane):
    doctor = store.admins.find_by_username("doctor")
    store.admins.delete(doctor.id)
    assert store.patients.list() == [jane]


def test_change_password(store):
    admin = store.admins.find_by_username("admin")
    assert store.admins.change_password(admin.id, "wrong", "next") is False
    assert store.admins.change_password("ADMIN-missing", "admin123", "next") is False
    assert store.admins.authenticate("admin", "admin123")

    assert store.admins.change_password(admin.id, "admin123", "next") is True
    assert store.admins.authenticate("admin", "next").id == admin.id
    with pytest.raises(AuthenticationError):
        store.admins.authenticate("admin", "admin123")


def test_list_is_stable_without_writes(store):
    assert store.admins.list() == store.admins.list()
