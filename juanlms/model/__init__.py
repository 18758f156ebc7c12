# ruff: noqa: F401

from juanlms.model.enums import TicketStatus, UserRole
from juanlms.model.message import Message
from juanlms.model.ticket import Ticket
from juanlms.model.ticket_reply import TicketReply
from juanlms.model.user import User

# every model with columns that go through the field cipher
ENCRYPTED_MODELS = (User, Message, Ticket, TicketReply)
