"""Base classes and interfaces for communication channels."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional


@dataclass
class OutgoingMessage:
    """A message to one donor.

    subject: only used by channels that have one (email)
    body: plain text
    """

    subject: Optional[str]
    body: str


class ChannelError(Exception):
    """Delivery over a channel failed."""


class Channel(ABC):
    """Base class of a communication channel.

    Every channel has a unique ``key`` matching the ``comm_channel``
    enumeration and must be able to tell whether a donor is reachable.
    """

    #: machine key (``EMAIL``/``TELEGRAM``/``SMS``/``WHATSAPP``)
    key: str

    @abstractmethod
    def address_of(self, donor: Any) -> Optional[str]:
        """Return the donor's address on this channel or ``None``."""

    @abstractmethod
    def send(self, address: str, message: OutgoingMessage) -> None:
        """Deliver ``message``. Raise :class:`ChannelError` on failure."""

    def reaches(self, donor: Any) -> bool:
        return bool(self.address_of(donor))
