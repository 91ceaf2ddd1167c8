"""Channel registry."""
from importlib import import_module
from typing import Dict, Iterable, Optional

from .base import Channel

_registry: Dict[str, Channel] = {}


def load_all() -> None:
    """Import and register all built-in channels."""
    modules = ["mail", "telegram", "sms", "whatsapp"]
    for mod_name in modules:
        mod = import_module(f".{mod_name}", package=__package__)
        channel: Channel = getattr(mod, "channel")  # each module exposes 'channel'
        register(channel)


def register(channel: Channel) -> None:
    _registry[channel.key] = channel


def get(key: str) -> Optional[Channel]:
    if not _registry:
        load_all()
    return _registry.get((key or "").upper())


def all_channels() -> Iterable[Channel]:
    if not _registry:
        load_all()
    return _registry.values()
