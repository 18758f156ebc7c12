import secrets
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import Enum as SQLAlchemyEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from juanlms.crypto import decrypt_field, encrypt_field
from juanlms.crypto.db_field_encryption import get_cipher
from juanlms.db import db
from juanlms.model.enums import TicketStatus

if TYPE_CHECKING:
    from flask_sqlalchemy.model import Model

    from juanlms.model.ticket_reply import TicketReply
else:
    Model = db.Model


def gen_ticket_number() -> str:
    return Ticket.NUMBER_PREFIX + "".join(
        secrets.choice("0123456789") for _ in range(Ticket.NUMBER_DIGITS)
    )


class Ticket(Model):
    """A support ticket opened by a user."""

    __tablename__ = "tickets"

    NUMBER_PREFIX = "SJDD"
    NUMBER_DIGITS = 12
    LOOKUP_HASH_LENGTH = 64

    ENCRYPTED_FIELDS = ("user_id", "subject", "description", "file")

    id: Mapped[int] = mapped_column(primary_key=True, nullable=False, autoincrement=True)
    number: Mapped[str] = mapped_column(
        db.String(len(NUMBER_PREFIX) + NUMBER_DIGITS), unique=True, index=True, nullable=False
    )
    status: Mapped[TicketStatus] = mapped_column(
        SQLAlchemyEnum(TicketStatus, native_enum=False), default=TicketStatus.NEW, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )

    _user_id: Mapped[str] = mapped_column("user_id", db.Text, nullable=False)
    user_id_hash: Mapped[str] = mapped_column(db.String(LOOKUP_HASH_LENGTH), index=True)
    _subject: Mapped[Optional[str]] = mapped_column("subject", db.Text)
    _description: Mapped[Optional[str]] = mapped_column("description", db.Text)
    _file: Mapped[Optional[str]] = mapped_column("file", db.Text)

    replies: Mapped[list["TicketReply"]] = relationship(
        back_populates="ticket",
        order_by="TicketReply.id",
        cascade="all, delete-orphan",
    )

    def __init__(
        self,
        user_id: str,
        subject: str | None = None,
        description: str | None = None,
        file: str | None = None,
    ) -> None:
        super().__init__(number=gen_ticket_number())  # type: ignore[call-arg]
        self.user_id = user_id
        self.subject = subject
        self.description = description
        self.file = file

        if description:
            # the description opens the conversation
            self.add_reply(sender="user", sender_id=user_id, body=description)

    @property
    def user_id(self) -> str:
        return decrypt_field(self._user_id, domain="tickets.user_id")

    @user_id.setter
    def user_id(self, value: str) -> None:
        self._user_id = encrypt_field(value, domain="tickets.user_id")
        self.user_id_hash = get_cipher().lookup_hash(value)

    @property
    def subject(self) -> str | None:
        return decrypt_field(self._subject, domain="tickets.subject")

    @subject.setter
    def subject(self, value: str | None) -> None:
        self._subject = encrypt_field(value, domain="tickets.subject")

    @property
    def description(self) -> str | None:
        return decrypt_field(self._description, domain="tickets.description")

    @description.setter
    def description(self, value: str | None) -> None:
        self._description = encrypt_field(value, domain="tickets.description")

    @property
    def file(self) -> str | None:
        return decrypt_field(self._file, domain="tickets.file")

    @file.setter
    def file(self, value: str | None) -> None:
        self._file = encrypt_field(value, domain="tickets.file")

    def add_reply(self, *, sender: str, sender_id: str, body: str) -> "TicketReply":
        from juanlms.model.ticket_reply import TicketReply

        reply = TicketReply(sender=sender, sender_id=sender_id, body=body)
        self.replies.append(reply)
        self.updated_at = datetime.now(UTC)
        return reply

    def open(self) -> None:
        self.status = TicketStatus.OPENED
        self.updated_at = datetime.now(UTC)

    def close(self) -> None:
        self.status = TicketStatus.CLOSED
        self.updated_at = datetime.now(UTC)

    @classmethod
    def for_user(cls, user_id: str) -> list["Ticket"]:
        return list(
            db.session.scalars(
                db.select(cls)
                .filter_by(user_id_hash=get_cipher().lookup_hash(user_id))
                .order_by(cls.id)
            ).all()
        )

    @classmethod
    def with_status(cls, status: TicketStatus | None = None) -> list["Ticket"]:
        query = db.select(cls).order_by(cls.id)
        if status is not None:
            query = query.filter_by(status=status)
        return list(db.session.scalars(query).all())
