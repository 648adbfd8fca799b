"""Chorus - a wake/execution runtime for autonomous language-model personas."""

from chorus.models import (
    ChorusConfig,
    ChorusError,
    Persona,
    PersonaNotFoundError,
    Post,
    Session,
    Message,
    MemoryFragment,
    WakeRequest,
    WakeResponse,
)
from chorus.store import ChorusStore
from chorus.gateway import VirtualGateway
from chorus.runner import AgentRunner
from chorus.cascade import CascadeDispatcher, WakeService
from chorus.runtime import ChorusRuntime, build_runtime

__version__ = "0.1.0"

__all__ = [
    "ChorusStore",
    "ChorusConfig",
    "ChorusError",
    "ChorusRuntime",
    "build_runtime",
    "VirtualGateway",
    "AgentRunner",
    "WakeService",
    "CascadeDispatcher",
    "Persona",
    "PersonaNotFoundError",
    "Post",
    "Session",
    "Message",
    "MemoryFragment",
    "WakeRequest",
    "WakeResponse",
]
