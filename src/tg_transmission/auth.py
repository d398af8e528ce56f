from __future__ import annotations

from collections.abc import Iterable


class Authorizer:
    """Allow-list of Telegram usernames, compared verbatim."""

    __slots__ = ("_allowed",)

    def __init__(self, allowed_users: Iterable[str]) -> None:
        self._allowed = frozenset(allowed_users)

    def __contains__(self, identity: object) -> bool:
        return isinstance(identity, str) and identity in self._allowed

    def is_allowed(self, identity: str | None) -> bool:
        return identity in self
