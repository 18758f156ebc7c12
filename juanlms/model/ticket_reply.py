from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy.orm import Mapped, mapped_column, relationship

from juanlms.crypto import decrypt_field, encrypt_field
from juanlms.db import db

if TYPE_CHECKING:
    from flask_sqlalchemy.model import Model

    from juanlms.model.ticket import Ticket
else:
    Model = db.Model


class TicketReply(Model):
    __tablename__ = "ticket_replies"

    ENCRYPTED_FIELDS = ("sender", "sender_id", "body")

    id: Mapped[int] = mapped_column(primary_key=True, nullable=False, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(db.ForeignKey("tickets.id"), nullable=False)
    ticket: Mapped["Ticket"] = relationship(back_populates="replies")
    created_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )
    _sender: Mapped[str] = mapped_column("sender", db.Text, nullable=False)
    _sender_id: Mapped[str] = mapped_column("sender_id", db.Text, nullable=False)
    _body: Mapped[str] = mapped_column("body", db.Text, nullable=False)

    def __init__(self, *, sender: str, sender_id: str, body: str) -> None:
        super().__init__()
        self.sender = sender
        self.sender_id = sender_id
        self.body = body

    @property
    def sender(self) -> str:
        return decrypt_field(self._sender, domain="ticket_replies.sender")

    @sender.setter
    def sender(self, value: str) -> None:
        self._sender = encrypt_field(value, domain="ticket_replies.sender")

    @property
    def sender_id(self) -> str:
        return decrypt_field(self._sender_id, domain="ticket_replies.sender_id")

    @sender_id.setter
    def sender_id(self, value: str) -> None:
        self._sender_id = encrypt_field(value, domain="ticket_replies.sender_id")

    @property
    def body(self) -> str:
        return decrypt_field(self._body, domain="ticket_replies.body")

    @body.setter
    def body(self, value: str) -> None:
        self._body = encrypt_field(value, domain="ticket_replies.body")
