"""Per-user reply addresses of the form ``reply+{token}@{domain}``.

The user id travels inside the address, so a reply can be routed to its
account without any server-side lookup table. Tokens keep ``[A-Za-z0-9-]``
verbatim and write every other UTF-8 byte as ``_`` plus two lowercase hex
digits, which makes the mapping lossless for any id string.
"""

import re
from email.utils import getaddresses
from typing import Iterable, Optional

_VERBATIM = re.compile(r"[A-Za-z0-9-]")
_TOKEN = re.compile(r"^(?:[A-Za-z0-9-]|_[0-9a-fA-F]{2})+$")
_ESCAPE = re.compile(r"_([0-9a-fA-F]{2})")


def encode_token(user_id: str) -> str:
    """Render a user id as an address-safe token."""
    parts = []
    for char in user_id:
        if _VERBATIM.fullmatch(char):
            parts.append(char)
        else:
            parts.extend(f"_{byte:02x}" for byte in char.encode("utf-8"))
    return "".join(parts)


def decode_token(token: str) -> Optional[str]:
    """Inverse of ``encode_token``; None for anything it could not have produced."""
    if not token or not _TOKEN.match(token):
        return None

    raw = bytearray()
    position = 0
    for match in _ESCAPE.finditer(token):
        raw.extend(token[position:match.start()].encode("ascii"))
        raw.append(int(match.group(1), 16))
        position = match.end()
    raw.extend(token[position:].encode("ascii"))

    try:
        user_id = raw.decode("utf-8")
    except UnicodeDecodeError:
        return None

    # Only the canonical spelling maps back, keeping the codec one-to-one.
    if encode_token(user_id) != token:
        return None
    return user_id


class ReplyAddressCodec:
    """Maps user ids to reply addresses and back."""

    def __init__(self, domain: str, local_part: str = "reply"):
        self.domain = domain.strip().lower()
        self.local_part = local_part.strip().lower()

    def encode(self, user_id: str) -> str:
        """Reply address for a user."""
        if not user_id:
            raise ValueError("user_id must be a non-empty string")
        return f"{self.local_part}+{encode_token(user_id)}@{self.domain}"

    def decode(self, address: str) -> Optional[str]:
        """User id embedded in ``address``, or None when it is not one of ours.

        Accepts bare addresses as well as ``"Name" <addr>`` forms.
        """
        if not isinstance(address, str):
            return None

        parsed = getaddresses([address])
        if len(parsed) != 1:
            return None
        email = parsed[0][1].strip()

        local, at, domain = email.rpartition("@")
        if not at or domain.lower() != self.domain:
            return None

        prefix, plus, token = local.partition("+")
        if not plus or prefix.lower() != self.local_part:
            return None

        return decode_token(token)

    def find_user_id(self, recipients: Iterable[str]) -> Optional[str]:
        """First user id found among recipient header values.

        Each value may itself hold a comma separated address list.
        """
        for _, email in getaddresses(list(recipients)):
            user_id = self.decode(email)
            if user_id is not None:
                return user_id
        return None
