"""
Classification of the free-form identifier users log in or recover with.

An identifier is an email address when it parses as one, a contact number
when it is exactly 11 digits, and a username otherwise.
"""
import enum
import re
from dataclasses import dataclass

from email_validator import validate_email, EmailNotValidError

CONTACT_NUMBER_PATTERN = re.compile(r"[0-9]{11}")


class IdentifierKind(str, enum.Enum):
    EMAIL = "email address"
    CONTACT_NUMBER = "contact number"
    USERNAME = "username"


# User column each kind is looked up by
LOOKUP_FIELDS = {
    IdentifierKind.EMAIL: "email",
    IdentifierKind.CONTACT_NUMBER: "contact_number",
    IdentifierKind.USERNAME: "username",
}


@dataclass(frozen=True)
class Identifier:
    kind: IdentifierKind
    value: str

    @property
    def field(self) -> str:
        return LOOKUP_FIELDS[self.kind]


def classify(identifier: str) -> Identifier:
    value = identifier.strip()

    try:
        email = validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        pass
    else:
        return Identifier(IdentifierKind.EMAIL, email.normalized)

    if CONTACT_NUMBER_PATTERN.fullmatch(value):
        return Identifier(IdentifierKind.CONTACT_NUMBER, value)

    return Identifier(IdentifierKind.USERNAME, value)
