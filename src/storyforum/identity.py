"""Identity provider collaborators that report who is calling."""

from __future__ import annotations

from abc import ABC, abstractmethod

from .models import Caller


class IdentityProvider(ABC):
    """Supplies the caller on whose behalf the engine acts.

    Implementations return :meth:`Caller.anonymous` for signed-out sessions
    and may raise any exception when the upstream service is unreachable.
    """

    @abstractmethod
    async def current_caller(self) -> Caller:
        """Return the caller for the active session."""


class StaticIdentityProvider(IdentityProvider):
    """Report a fixed caller, switchable as the session signs in or out."""

    def __init__(self, caller: Caller | None = None) -> None:
        self._caller = caller or Caller.anonymous()

    async def current_caller(self) -> Caller:
        return self._caller

    def sign_in(self, caller: Caller) -> None:
        self._caller = caller

    def sign_out(self) -> None:
        self._caller = Caller.anonymous()


__all__ = ["IdentityProvider", "StaticIdentityProvider"]
