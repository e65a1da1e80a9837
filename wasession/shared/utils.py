from __future__ import annotations
import base64
import re
import time
from dataclasses import dataclass

# ========================================
#           ENCODING HELPERS
# ========================================

def b64url_nopad(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def now_ms() -> int:
    return int(time.time() * 1000)


# ========================================
#           ADDRESS PARSING
# ========================================
"""
Participant addresses look like 'user@server'. Phone numbers given on the
command line are bare digits and get the default user server appended.
"""

DEFAULT_USER_SERVER = "s.whatsapp.net"
GROUP_SERVER = "g.us"
KNOWN_SERVERS = frozenset({DEFAULT_USER_SERVER, GROUP_SERVER, "lid", "broadcast"})

_PHONE_RE = re.compile(r'^\d{5,20}$')
_GROUP_RE = re.compile(r'^\d+(-\d+)?$')


class AddressParseError(ValueError):
    """Raised when text is not a well-formed participant address."""
    pass


@dataclass(frozen=True)
class ParticipantAddress:
    user: str
    server: str = DEFAULT_USER_SERVER
    device: int = 0

    def __str__(self) -> str:
        if self.device:
            return f"{self.user}:{self.device}@{self.server}"
        return f"{self.user}@{self.server}"


def is_phone_digits(s: str) -> bool:
    """
    True for 5 to 20 ASCII digits, the shape of an international number
    without '+' or separators.
    """
    return bool(_PHONE_RE.fullmatch(s))


def parse_address(text: str) -> ParticipantAddress:
    """
    Parse 'digits', '+digits', 'user@server' or 'user:device@server'.

    - server must be one of KNOWN_SERVERS
    - users on the default server must be phone digits
    - group ids are digits with an optional '-digits' suffix
    """
    if not isinstance(text, str):
        raise AddressParseError("address must be a string")
    raw = text.strip()
    if not raw:
        raise AddressParseError("address is empty")

    if "@" in raw:
        user, server = raw.split("@", 1)
    else:
        user, server = raw, DEFAULT_USER_SERVER
    if server not in KNOWN_SERVERS:
        raise AddressParseError(f"unknown server '{server}'")

    device = 0
    if ":" in user:
        user, device_s = user.split(":", 1)
        if not device_s.isdigit():
            raise AddressParseError(f"invalid device '{device_s}'")
        device = int(device_s)

    if server == DEFAULT_USER_SERVER:
        user = user[1:] if user.startswith("+") else user
        if not is_phone_digits(user):
            raise AddressParseError(f"'{text}' is not a phone number")
    elif server == GROUP_SERVER:
        if not _GROUP_RE.fullmatch(user):
            raise AddressParseError(f"'{text}' is not a group id")
    elif not user:
        raise AddressParseError(f"'{text}' has an empty user part")

    return ParticipantAddress(user=user, server=server, device=device)
