"""
Deliberation sessions, their state machine, and the session store.
"""
import uuid
from collections import OrderedDict
from datetime import datetime, timezone
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from loguru import logger

from .errors import ErrorKind, InvalidTransition

if TYPE_CHECKING:
    from .anonymizer import AnonymizedEntry
    from .collector import ModelResponse
    from .consensus import SynthesisResult
    from .review import PeerRanking, RejectedRanking
    from .voting import AggregateRanking


class SessionState(str, Enum):
    COLLECTING = "COLLECTING"
    ANONYMIZED = "ANONYMIZED"
    REVIEWING = "REVIEWING"
    AGGREGATED = "AGGREGATED"
    SYNTHESIZING = "SYNTHESIZING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.COMPLETE, SessionState.FAILED)


TRANSITIONS: Dict[SessionState, Tuple[SessionState, ...]] = {
    SessionState.COLLECTING: (SessionState.ANONYMIZED, SessionState.FAILED),
    SessionState.ANONYMIZED: (SessionState.REVIEWING, SessionState.FAILED),
    SessionState.REVIEWING: (SessionState.AGGREGATED, SessionState.FAILED),
    SessionState.AGGREGATED: (SessionState.SYNTHESIZING, SessionState.FAILED),
    SessionState.SYNTHESIZING: (SessionState.COMPLETE, SessionState.FAILED),
    SessionState.COMPLETE: (),
    SessionState.FAILED: (),
}

# TIMEOUT may end any live state; the other fatal reasons belong to one stage.
FAILURE_ORIGINS: Dict[ErrorKind, Tuple[SessionState, ...]] = {
    ErrorKind.INSUFFICIENT_QUORUM: (SessionState.COLLECTING,),
    ErrorKind.SYNTHESIS_UNAVAILABLE: (SessionState.SYNTHESIZING,),
    ErrorKind.TIMEOUT: tuple(s for s in SessionState if not s.is_terminal),
}


def new_session_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeliberationSession:
    """
    One question's lifecycle.

    The label to model mapping lives only here. It is set once by the
    anonymization stage, handed out as a read-only copy to the aggregator,
    and dropped together with the rest of the working state once the
    session is terminal.
    """

    def __init__(
        self,
        question: str,
        participants: List[str],
        chairman_model_id: Optional[str] = None,
        session_id: Optional[str] = None
    ):
        self.id = session_id or new_session_id()
        self.question = question
        self.participants: Tuple[str, ...] = tuple(participants)
        self.chairman_model_id = chairman_model_id
        self.state = SessionState.COLLECTING
        self.failure_reason: Optional[ErrorKind] = None
        self.failure_message: str = ""
        self.created_at = utcnow()
        self.finished_at: Optional[datetime] = None

        self.responses: List["ModelResponse"] = []
        self.entries: List["AnonymizedEntry"] = []
        self.rankings: List["PeerRanking"] = []
        self.rejected_rankings: List["RejectedRanking"] = []
        self.failed_judges: Dict[str, str] = {}
        self.aggregate: Optional["AggregateRanking"] = None
        self.result: Optional["SynthesisResult"] = None

        self._label_map: Optional[Dict[str, str]] = None

    def __repr__(self) -> str:
        return f"DeliberationSession(id={self.id}, state={self.state.value})"

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def transition(self, target: SessionState):
        """Advance the state machine; terminal states never change."""
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransition(f"{self.state.value} -> {target.value}")
        if target == SessionState.FAILED:
            raise InvalidTransition("Use fail() to enter FAILED")
        logger.debug(f"Session {self.id}: {self.state.value} -> {target.value}")
        self.state = target
        if target.is_terminal:
            self.finished_at = utcnow()

    def fail(self, reason: ErrorKind, message: str = ""):
        if self.is_terminal:
            raise InvalidTransition(f"Session {self.id} is already {self.state.value}")
        if self.state not in FAILURE_ORIGINS.get(reason, ()):
            raise InvalidTransition(f"{reason.value} cannot end a session in {self.state.value}")
        logger.debug(f"Session {self.id}: {self.state.value} -> FAILED({reason.value})")
        self.state = SessionState.FAILED
        self.failure_reason = reason
        self.failure_message = message
        self.finished_at = utcnow()

    def set_mapping(self, mapping: Dict[str, str]):
        if self._label_map is not None:
            raise InvalidTransition("Anonymization mapping is already set")
        self._label_map = dict(mapping)

    def mapping_view(self) -> Mapping[str, str]:
        """Read-only copy of the label to model mapping."""
        if self._label_map is None:
            raise InvalidTransition("Session has not been anonymized")
        return MappingProxyType(dict(self._label_map))

    def release_working_state(self):
        """Drop everything the caller cannot poll for."""
        self._label_map = None
        self.entries = []
        self.responses = []
        self.rankings = []
        self.rejected_rankings = []
        self.failed_judges = {}

    def audit_trail(self) -> Dict[str, Any]:
        """Everything the persistence sink records for this session."""
        return {
            "session_id": self.id,
            "question": self.question,
            "participants": list(self.participants),
            "state": self.state.value,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "failure_message": self.failure_message,
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "responses": [r.to_dict() for r in self.responses],
            "rankings": [r.to_dict() for r in self.rankings],
            "rejected_rankings": [r.to_dict() for r in self.rejected_rankings],
            "failed_judges": dict(self.failed_judges),
            "aggregate": self.aggregate.to_dict() if self.aggregate else None,
            "result": self.result.to_dict() if self.result else None,
        }

    def status_view(self) -> Dict[str, Any]:
        """The externally visible status: state, plus result or failure reason."""
        view: Dict[str, Any] = {"sessionId": self.id, "state": self.state.value}
        if self.state == SessionState.COMPLETE and self.result:
            view["result"] = self.result.to_dict()
        elif self.state == SessionState.FAILED:
            view["failureReason"] = self.failure_reason.value
            if self.failure_message:
                view["message"] = self.failure_message
        return view


class SessionStore:
    """
    Keeps sessions addressable by id so callers can poll them.

    Sessions share nothing with each other; the store only indexes them.
    Once ``max_sessions`` is exceeded the oldest terminal sessions are
    evicted.
    """

    def __init__(self, max_sessions: int = 1000):
        self.max_sessions = max_sessions
        self._sessions: "OrderedDict[str, DeliberationSession]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def add(self, session: DeliberationSession):
        if session.id in self._sessions:
            raise ValueError(f"Session {session.id} already exists")
        self._sessions[session.id] = session
        self._evict()

    def get(self, session_id: str) -> Optional[DeliberationSession]:
        return self._sessions.get(session_id)

    def active(self) -> List[DeliberationSession]:
        return [s for s in self._sessions.values() if not s.is_terminal]

    def _evict(self):
        overflow = len(self._sessions) - self.max_sessions
        if overflow <= 0:
            return
        for session_id in [sid for sid, s in self._sessions.items() if s.is_terminal][:overflow]:
            del self._sessions[session_id]
