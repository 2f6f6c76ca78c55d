import dataclasses
import json
import logging
from typing import Dict, List, Optional

from bson import ObjectId

from records.errors import (
    AuthenticationError,
    BadCredentialError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from records.models import (
    Admin,
    Patient,
    Role,
    Scan,
    ScanStatus,
    ScanType,
    Session,
    coerce_enum,
    utc_timestamp,
)
from store.credentials import hash_password, verify_password
from store.kv import KeyValueStore, open_store

logger = logging.getLogger(__name__)

ADMINS_KEY = "admins"
PATIENTS_KEY = "patients"
SCANS_KEY = "scans"
CURRENT_USER_KEY = "currentUser"

SEED_CREATED_BY = "System"
DEFAULT_ACCOUNTS = (
    ("admin", "admin123", Role.ADMIN),
    ("doctor", "doctor123", Role.DOCTOR),
)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{ObjectId()}"


def require_role(session: Optional[Session], *roles: Role) -> Session:
    if session is None:
        raise PermissionDeniedError("No user is logged in")
    if session.role not in roles:
        allowed = " or ".join(r.value for r in roles)
        raise PermissionDeniedError(f"'{session.username}' is {session.role.value}, {allowed} required")
    return session


class _Repository:
    key: str = ""
    record_cls = None
    immutable = ("id",)

    def __init__(self, kv: KeyValueStore):
        self._kv = kv

    # -------------------------------------------------------------------------
    # Serialisation
    # -------------------------------------------------------------------------

    def _load(self) -> List:
        text = self._kv.get(self.key)
        if text is None:
            return []
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Stored '{self.key}' is not valid JSON: {e}") from e
        if not isinstance(data, list):
            raise ValidationError(f"Stored '{self.key}' must be a list")
        return [self.record_cls.from_dict(item) for item in data]

    def _dump(self, records) -> str:
        return json.dumps([r.to_dict() for r in records])

    def _save(self, records) -> None:
        self._kv.set(self.key, self._dump(records))

    def _index_of(self, records, record_id: str) -> int:
        for i, record in enumerate(records):
            if record.id == record_id:
                return i
        return -1

    def _merge(self, record, changes: Dict):
        """Shallow merge of ``changes`` into ``record``; immutable fields are ignored."""
        fields = record.__dataclass_fields__
        updates = {}
        for name, value in changes.items():
            if name in self.immutable:
                logger.debug("Ignoring change to immutable field %s.%s", self.record_cls.__name__, name)
                continue
            if name not in fields:
                raise ValidationError(f"Unknown {self.record_cls.__name__} field '{name}'")
            if value is None and name in self.record_cls.REQUIRED:
                raise ValidationError(f"{self.record_cls.__name__}.{name} cannot be cleared")
            enum_cls = self.record_cls.ENUM_FIELDS.get(name)
            if enum_cls is not None and value is not None:
                value = coerce_enum(enum_cls, value)
            updates[name] = value
        return dataclasses.replace(record, **updates)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def list(self) -> List:
        return self._load()

    def find_by_id(self, record_id: str):
        for record in self._load():
            if record.id == record_id:
                return record
        logger.debug("%s %s not found", self.record_cls.__name__, record_id)
        return None


class AccountRepository(_Repository):
    key = ADMINS_KEY
    record_cls = Admin
    immutable = ("id", "created_at")

    def find_by_username(self, username: str) -> Optional[Admin]:
        for admin in self._load():
            if admin.username == username:
                return admin
        return None

    def _build(self, username: str, password: str, role, created_by: Optional[str]) -> Admin:
        return Admin(
            id=_new_id("ADMIN"),
            username=username,
            password=hash_password(password),
            role=coerce_enum(Role, role),
            created_at=utc_timestamp(),
            created_by=created_by,
        )

    def create(self, username: str, password: str, role, created_by: Optional[str] = None) -> Admin:
        admins = self._load()
        if any(a.username == username for a in admins):
            raise ConflictError(f"Username '{username}' already exists")

        admin = self._build(username, password, role, created_by)
        admins.append(admin)
        self._save(admins)
        logger.info("Created %s account '%s' (%s)", admin.role.value, admin.username, admin.id)
        return admin

    def update(self, account_id: str, **changes) -> Optional[Admin]:
        """
        Shallow-merge ``changes`` into the account.

        A plain-text ``password`` is hashed before it is stored. Renaming onto
        a username held by another account raises :class:`ConflictError`.
        """
        admins = self._load()
        index = self._index_of(admins, account_id)
        if index == -1:
            return None

        if changes.get("password") is not None:
            changes["password"] = hash_password(changes["password"])

        new_username = changes.get("username")
        if new_username is not None and any(
            a.username == new_username and a.id != account_id for a in admins
        ):
            raise ConflictError(f"Username '{new_username}' already exists")

        admins[index] = self._merge(admins[index], changes)
        self._save(admins)
        logger.info("Updated account %s (%s)", account_id, ", ".join(sorted(changes)))
        return admins[index]

    def delete(self, account_id: str) -> bool:
        admins = self._load()
        remaining = [a for a in admins if a.id != account_id]
        if len(remaining) == len(admins):
            return False
        self._save(remaining)
        logger.info("Deleted account %s", account_id)
        return True

    def _check_credentials(self, username: str, password: str) -> Admin:
        admin = self.find_by_username(username)
        if admin is None:
            raise NotFoundError(f"No account named '{username}'")
        if not verify_password(password, admin.password):
            raise BadCredentialError(f"Wrong password for '{username}'")
        return admin

    def authenticate(self, username: str, password: str) -> Admin:
        """
        Return the account matching the credentials.

        Does not open a session, see :meth:`LocalRecordStore.login`.
        """
        try:
            return self._check_credentials(username, password)
        except (NotFoundError, BadCredentialError) as e:
            logger.debug("Authentication failed: %s", e)
            raise AuthenticationError() from None

    def change_password(self, account_id: str, old_password: str, new_password: str) -> bool:
        admin = self.find_by_id(account_id)
        if admin is None:
            return False
        if not verify_password(old_password, admin.password):
            return False
        self.update(account_id, password=new_password)
        return True

    def default_accounts(self) -> List[Admin]:
        return [
            self._build(username, password, role, SEED_CREATED_BY)
            for username, password, role in DEFAULT_ACCOUNTS
        ]


class ScanRepository(_Repository):
    key = SCANS_KEY
    record_cls = Scan
    immutable = ("id", "uploaded_at")

    def create(
        self,
        patient_id: str,
        patient_name: str,
        scan_type,
        image_data: str,
        status=ScanStatus.PENDING,
        notes: Optional[str] = None,
        reviewed_by: Optional[str] = None,
        reviewed_at: Optional[str] = None,
    ) -> Scan:
        scan = Scan(
            id=_new_id("SCAN"),
            patient_id=patient_id,
            patient_name=patient_name,
            scan_type=coerce_enum(ScanType, scan_type),
            image_data=image_data,
            status=coerce_enum(ScanStatus, status),
            uploaded_at=utc_timestamp(),
            reviewed_by=reviewed_by,
            reviewed_at=reviewed_at,
            notes=notes,
        )
        scans = self._load()
        scans.append(scan)
        self._save(scans)
        logger.info("Uploaded %s scan %s for patient %s", scan.scan_type.value, scan.id, patient_id)
        return scan

    def update(self, scan_id: str, **changes) -> Optional[Scan]:
        # any status may follow any other; there is no transition table
        scans = self._load()
        index = self._index_of(scans, scan_id)
        if index == -1:
            return None
        scans[index] = self._merge(scans[index], changes)
        self._save(scans)
        logger.info("Updated scan %s (%s)", scan_id, ", ".join(sorted(changes)))
        return scans[index]

    def review(self, scan_id: str, reviewer: Session, status=ScanStatus.REVIEWED, notes: str = "") -> Optional[Scan]:
        """Record a doctor's review: status, reviewer, time and notes are set together."""
        require_role(reviewer, Role.DOCTOR)
        status = coerce_enum(ScanStatus, status)
        if status == ScanStatus.PENDING:
            raise ValidationError("A review must end in Reviewed or Requires Follow-up")
        return self.update(
            scan_id,
            status=status,
            reviewed_by=reviewer.username,
            reviewed_at=utc_timestamp(),
            notes=notes,
        )

    def set_status(self, scan_id: str, status) -> Optional[Scan]:
        return self.update(scan_id, status=status)

    def list_by_patient(self, patient_id: str) -> List[Scan]:
        return [s for s in self._load() if s.patient_id == patient_id]

    def search(self, term: str = "", status=None) -> List[Scan]:
        term = term.strip().lower()
        if status is not None:
            status = coerce_enum(ScanStatus, status)
        out = []
        for scan in self._load():
            if term and term not in scan.patient_name.lower() and term not in scan.scan_type.value.lower():
                continue
            if status is not None and scan.status != status:
                continue
            out.append(scan)
        return out


class PatientRepository(_Repository):
    key = PATIENTS_KEY
    record_cls = Patient
    immutable = ("id", "created_at")

    def __init__(self, kv: KeyValueStore, scans: ScanRepository):
        super().__init__(kv)
        self._scans = scans

    def next_patient_code(self) -> str:
        return f"P-{len(self._load()) + 1:05d}"

    def search(self, term: str = "") -> List[Patient]:
        """Case-insensitive match on name or display code; a blank term matches everyone."""
        term = term.strip().lower()
        return [
            p for p in self._load()
            if term in p.name.lower() or term in p.patient_id.lower()
        ]

    def create(
        self,
        name: str,
        age: int,
        patient_id: str,
        contact_number: str,
        gender: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Patient:
        patients = self._load()
        if any(p.patient_id == patient_id for p in patients):
            raise ConflictError(f"Patient code '{patient_id}' is already assigned")

        patient = Patient(
            id=_new_id("PAT"),
            name=name,
            age=age,
            patient_id=patient_id,
            contact_number=contact_number,
            created_at=utc_timestamp(),
            gender=gender,
            notes=notes,
        )
        patients.append(patient)
        self._save(patients)
        logger.info("Registered patient %s (%s)", patient.patient_id, patient.id)
        return patient

    def update(self, record_id: str, **changes) -> Optional[Patient]:
        """
        Shallow-merge ``changes`` into the patient.

        A new ``name`` is copied onto every scan of this patient. The patient
        list and the scan list are committed in one store write, so the cached
        ``patient_name`` on scans never drifts from the patient record.
        """
        patients = self._load()
        index = self._index_of(patients, record_id)
        if index == -1:
            return None

        new_code = changes.get("patient_id")
        if new_code is not None and any(
            p.patient_id == new_code and p.id != record_id for p in patients
        ):
            raise ConflictError(f"Patient code '{new_code}' is already assigned")

        patients[index] = self._merge(patients[index], changes)
        writes = {PATIENTS_KEY: self._dump(patients)}

        if "name" in changes:
            new_name = patients[index].name
            scans = self._scans.list()
            touched = 0
            for i, scan in enumerate(scans):
                if scan.patient_id == record_id:
                    scans[i] = dataclasses.replace(scan, patient_name=new_name)
                    touched += 1
            writes[SCANS_KEY] = self._scans._dump(scans)
            logger.info("Renamed patient %s, refreshed %d scan(s)", record_id, touched)

        self._kv.write(writes)
        return patients[index]


class LocalRecordStore:
    """
    Admins, patients, scans and the logged-in session over one key-value store.

    The session is an explicit :class:`Session` value: ``login`` returns it and
    operations that act on behalf of a user take it as an argument.
    """

    def __init__(self, kv: Optional[KeyValueStore] = None):
        self.kv = kv if kv is not None else open_store()
        self.admins = AccountRepository(self.kv)
        self.scans = ScanRepository(self.kv)
        self.patients = PatientRepository(self.kv, self.scans)

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    def set_current_user(self, session: Session) -> None:
        self.kv.set(CURRENT_USER_KEY, json.dumps(session.to_dict()))

    def get_current_user(self) -> Optional[Session]:
        text = self.kv.get(CURRENT_USER_KEY)
        if text is None:
            return None
        try:
            return Session.from_dict(json.loads(text))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning("Discarding unreadable stored session: %s", e)
            return None

    def clear_current_user(self) -> None:
        self.kv.remove(CURRENT_USER_KEY)

    def login(self, username: str, password: str) -> Session:
        session = Session.for_account(self.admins.authenticate(username, password))
        self.set_current_user(session)
        logger.info("'%s' logged in as %s", session.username, session.role.value)
        return session

    def logout(self) -> None:
        self.clear_current_user()

    # -------------------------------------------------------------------------
    # Seeding / reset
    # -------------------------------------------------------------------------

    def ensure_default_accounts(self) -> bool:
        """Seed the demo accounts when no account exists yet. Returns True if seeded."""
        if self.admins.list():
            return False
        self.kv.set(ADMINS_KEY, self.admins._dump(self.admins.default_accounts()))
        logger.info("Seeded default accounts")
        return True

    def reset_all(self) -> None:
        """
        Wipe patients, scans, accounts and the session, then seed the two demo
        accounts. Irreversible; callers must confirm with the user first.
        """
        self.kv.write({
            PATIENTS_KEY: None,
            SCANS_KEY: None,
            CURRENT_USER_KEY: None,
            ADMINS_KEY: self.admins._dump(self.admins.default_accounts()),
        })
        logger.warning("All records were reset to defaults")
