"""Signaling relay interface."""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Tuple


class SignalingRelay(ABC):
    """Best-effort channel used to tell participants about call state changes.

    notify() must not block and must not raise: delivery is at-most-once and
    nothing in the call engine waits for an acknowledgement.
    """

    @abstractmethod
    def notify(self, participant_id: str, event: str, payload: Dict[str, Any]) -> None:
        """Queue an event for a participant."""
        pass

    def is_reachable(self, participant_id: str) -> bool:
        """Whether the participant can currently be located."""
        return True


class NullRelay(SignalingRelay):
    """Relay that drops every event."""

    def notify(self, participant_id: str, event: str, payload: Dict[str, Any]) -> None:
        pass


class RecordingRelay(SignalingRelay):
    """Relay that keeps every event in memory."""

    def __init__(self, offline: Tuple[str, ...] = ()):
        self.events: List[Tuple[str, str, Dict[str, Any]]] = []
        self.offline = set(offline)

    def notify(self, participant_id: str, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((participant_id, event, dict(payload)))

    def is_reachable(self, participant_id: str) -> bool:
        return participant_id not in self.offline

    def events_for(self, participant_id: str) -> List[str]:
        return [event for pid, event, _ in self.events if pid == participant_id]
