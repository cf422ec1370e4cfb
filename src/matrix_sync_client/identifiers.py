"""User id helpers.

Localpart encoding maps arbitrary strings onto the restricted character set
allowed in Matrix user ids:

- a-z, 0-9, '.', '-' and '/' are kept
- A-Z become '_' followed by the lower-case letter
- '_' becomes '__'
- every other byte becomes '=xx' (lower-case hex)
"""

from __future__ import annotations

_LOWER_HEX = "0123456789abcdef"


def _is_plain(b: int) -> bool:
    return (
        ord("a") <= b <= ord("z")
        or ord("0") <= b <= ord("9")
        or b in (ord("."), ord("-"), ord("/"))
    )


def encode_user_localpart(value: str) -> str:
    """Encode a string into a valid user id localpart.

    >>> encode_user_localpart("Alice_Smith")
    '_alice___smith'
    """
    out: list[str] = []
    for b in value.encode("utf-8"):
        if _is_plain(b):
            out.append(chr(b))
        elif ord("A") <= b <= ord("Z"):
            out.append("_" + chr(b).lower())
        elif b == ord("_"):
            out.append("__")
        else:
            out.append("=" + _LOWER_HEX[b >> 4] + _LOWER_HEX[b & 0x0F])
    return "".join(out)


def decode_user_localpart(localpart: str) -> str:
    """Reverse encode_user_localpart.

    Raises:
        ValueError: If the input is not a valid encoding
    """
    data = localpart.encode("utf-8")
    out = bytearray()
    i = 0
    while i < len(data):
        b = data[i]
        if _is_plain(b):
            out.append(b)
        elif b == ord("_"):
            i += 1
            if i >= len(data):
                raise ValueError(f"Truncated underscore escape at end of {localpart!r}")
            nxt = data[i]
            if nxt == ord("_"):
                out.append(nxt)
            elif ord("a") <= nxt <= ord("z"):
                out.append(nxt - 0x20)
            else:
                raise ValueError(f"Invalid character after underscore at position {i} in {localpart!r}")
        elif b == ord("="):
            hex_pair = data[i + 1 : i + 3].decode("ascii", errors="replace")
            if len(hex_pair) != 2 or any(c not in _LOWER_HEX for c in hex_pair):
                raise ValueError(f"Invalid '=' escape at position {i} in {localpart!r}")
            out.append(int(hex_pair, 16))
            i += 2
        else:
            raise ValueError(f"Invalid byte {b:#04x} at position {i} in {localpart!r}")
        i += 1
    return out.decode("utf-8")


def extract_user_localpart(user_id: str) -> str:
    """Return the localpart of a user id.

    >>> extract_user_localpart("@alice:example.org")
    'alice'

    Raises:
        ValueError: If user_id does not start with '@'
    """
    if not user_id.startswith("@"):
        raise ValueError(f"{user_id!r} is not a valid user id")
    return user_id[1:].split(":", 1)[0]
