from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy.orm import Mapped, mapped_column

from juanlms.crypto import decrypt_field, encrypt_field
from juanlms.db import db

if TYPE_CHECKING:
    from flask_sqlalchemy.model import Model
else:
    Model = db.Model


class Message(Model):
    """A direct message between two users."""

    __tablename__ = "messages"

    ENCRYPTED_FIELDS = ("sender_id", "receiver_id", "body", "file_url")

    id: Mapped[int] = mapped_column(primary_key=True, nullable=False, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        db.DateTime(timezone=True), server_default=db.func.now(), nullable=False
    )
    _sender_id: Mapped[str] = mapped_column("sender_id", db.Text, nullable=False)
    _receiver_id: Mapped[str] = mapped_column("receiver_id", db.Text, nullable=False)
    _body: Mapped[Optional[str]] = mapped_column("body", db.Text)
    _file_url: Mapped[Optional[str]] = mapped_column("file_url", db.Text)

    def __init__(
        self,
        sender_id: str,
        receiver_id: str,
        body: str | None = None,
        file_url: str | None = None,
    ) -> None:
        if not body and not file_url:
            raise ValueError("A message needs a body or a file")

        super().__init__()
        self.sender_id = sender_id
        self.receiver_id = receiver_id
        self.body = body
        self.file_url = file_url

    @property
    def sender_id(self) -> str:
        return decrypt_field(self._sender_id, domain="messages.sender_id")

    @sender_id.setter
    def sender_id(self, value: str) -> None:
        self._sender_id = encrypt_field(value, domain="messages.sender_id")

    @property
    def receiver_id(self) -> str:
        return decrypt_field(self._receiver_id, domain="messages.receiver_id")

    @receiver_id.setter
    def receiver_id(self, value: str) -> None:
        self._receiver_id = encrypt_field(value, domain="messages.receiver_id")

    @property
    def body(self) -> str | None:
        return decrypt_field(self._body, domain="messages.body")

    @body.setter
    def body(self, value: str | None) -> None:
        self._body = encrypt_field(value, domain="messages.body")

    @property
    def file_url(self) -> str | None:
        return decrypt_field(self._file_url, domain="messages.file_url")

    @file_url.setter
    def file_url(self, value: str | None) -> None:
        self._file_url = encrypt_field(value, domain="messages.file_url")

    def is_between(self, user_a: str, user_b: str) -> bool:
        return {self.sender_id, self.receiver_id} == {user_a, user_b}
