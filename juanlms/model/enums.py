from enum import Enum


class UserRole(Enum):
    STUDENT = "students"
    FACULTY = "faculty"
    PARENT = "parent"
    ADMIN = "admin"
    PRINCIPAL = "principal"
    VPE = "vice president of education"


class TicketStatus(Enum):
    NEW = "new"
    OPENED = "opened"
    CLOSED = "closed"

    @classmethod
    def parse(cls, string: str) -> "TicketStatus":
        for var in cls:
            if var.value == string:
                return var
        raise ValueError(f"Not a valid value for {cls.__name__}: {string!r}")
