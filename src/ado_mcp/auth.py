"""Personal access token handling.

Azure DevOps accepts a PAT as the password of a Basic credential with an empty user name.
The token value must never be exposed through repr, logs, or tool output.
"""

from __future__ import annotations

import base64


class PersonalAccessToken:
    """Holds a PAT and derives the constant Authorization header."""

    __slots__ = ("_value", "_header")

    def __init__(self, value: str) -> None:
        self._value = value
        encoded = base64.b64encode(f":{value}".encode("utf-8")).decode("ascii")
        self._header = f"Basic {encoded}"

    @property
    def authorization_header(self) -> str:
        return self._header

    def __repr__(self) -> str:
        return "PersonalAccessToken(<redacted>)"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PersonalAccessToken):
            return NotImplemented
        return self._value == other._value

    def __hash__(self) -> int:
        return hash(self._value)
