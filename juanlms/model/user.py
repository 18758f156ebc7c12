from datetime import UTC, datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column

from juanlms.crypto import decrypt_field, encrypt_field
from juanlms.crypto.db_field_encryption import get_cipher
from juanlms.db import db
from juanlms.model.enums import UserRole

if TYPE_CHECKING:
    from flask_sqlalchemy.model import Model
else:
    Model = db.Model


class User(Model):
    __tablename__ = "users"

    LOOKUP_HASH_LENGTH = 64

    # python-side names of the encrypted columns, each stored as `_<name>`
    ENCRYPTED_FIELDS = (
        "firstname",
        "middlename",
        "lastname",
        "email",
        "personal_email",
        "contact_no",
        "school_id",
    )

    id: Mapped[int] = mapped_column(primary_key=True, nullable=False, autoincrement=True)
    role: Mapped[UserRole] = mapped_column(
        SQLAlchemyEnum(UserRole, native_enum=False), default=UserRole.STUDENT, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True), server_default=db.func.now(), nullable=False
    )
    is_archived: Mapped[bool] = mapped_column(default=False)
    archived_at: Mapped[Optional[datetime]] = mapped_column(db.DateTime(timezone=True))

    _firstname: Mapped[Optional[str]] = mapped_column("firstname", db.Text)
    _middlename: Mapped[Optional[str]] = mapped_column("middlename", db.Text)
    _lastname: Mapped[Optional[str]] = mapped_column("lastname", db.Text)
    _email: Mapped[Optional[str]] = mapped_column("email", db.Text)
    _personal_email: Mapped[Optional[str]] = mapped_column("personal_email", db.Text)
    _contact_no: Mapped[Optional[str]] = mapped_column("contact_no", db.Text)
    _school_id: Mapped[Optional[str]] = mapped_column("school_id", db.Text)

    # the encrypted email can't be queried, its keyed hash can
    email_hash: Mapped[Optional[str]] = mapped_column(
        db.String(LOOKUP_HASH_LENGTH), unique=True, index=True
    )

    @property
    def firstname(self) -> str | None:
        return decrypt_field(self._firstname, domain="users.firstname")

    @firstname.setter
    def firstname(self, value: str | None) -> None:
        self._firstname = encrypt_field(value, domain="users.firstname")

    @property
    def middlename(self) -> str | None:
        return decrypt_field(self._middlename, domain="users.middlename")

    @middlename.setter
    def middlename(self, value: str | None) -> None:
        self._middlename = encrypt_field(value, domain="users.middlename")

    @property
    def lastname(self) -> str | None:
        return decrypt_field(self._lastname, domain="users.lastname")

    @lastname.setter
    def lastname(self, value: str | None) -> None:
        self._lastname = encrypt_field(value, domain="users.lastname")

    @property
    def email(self) -> str | None:
        return decrypt_field(self._email, domain="users.email")

    @email.setter
    def email(self, value: str | None) -> None:
        self._email = encrypt_field(value, domain="users.email")
        self.email_hash = get_cipher().lookup_hash(value) if value else None

    @property
    def personal_email(self) -> str | None:
        return decrypt_field(self._personal_email, domain="users.personal_email")

    @personal_email.setter
    def personal_email(self, value: str | None) -> None:
        self._personal_email = encrypt_field(value, domain="users.personal_email")

    @property
    def contact_no(self) -> str | None:
        return decrypt_field(self._contact_no, domain="users.contact_no")

    @contact_no.setter
    def contact_no(self, value: str | None) -> None:
        self._contact_no = encrypt_field(value, domain="users.contact_no")

    @property
    def school_id(self) -> str | None:
        return decrypt_field(self._school_id, domain="users.school_id")

    @school_id.setter
    def school_id(self, value: str | None) -> None:
        self._school_id = encrypt_field(value, domain="users.school_id")

    @property
    def full_name(self) -> str:
        return " ".join(
            name for name in (self.firstname, self.middlename, self.lastname) if name
        )

    def archive(self) -> None:
        self.is_archived = True
        self.archived_at = datetime.now(UTC)

    @classmethod
    def find_by_email(cls, email: str) -> Optional["User"]:
        return db.session.scalars(
            db.select(cls).filter_by(email_hash=get_cipher().lookup_hash(email))
        ).one_or_none()
