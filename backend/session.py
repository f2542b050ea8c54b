from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional
import time
import logging

import config
from question_bank import QuestionRecord

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    IDLE = "IDLE"
    ROUND_ACTIVE = "ROUND_ACTIVE"
    ROUND_SETTLING = "ROUND_SETTLING"
    ENDED = "ENDED"


@dataclass
class QuestionAssignment:
    """A participant's own copy of the question for the current round."""
    question_text: str
    correct_answer: str
    options: List[str]
    image: Optional[str]
    issued_at: float
    answered: bool = False

    @classmethod
    def from_record(cls, record: QuestionRecord, issued_at: Optional[float] = None) -> "QuestionAssignment":
        return cls(
            question_text=record.question,
            correct_answer=record.answer,
            options=list(record.options),
            image=record.image,
            issued_at=time.time() if issued_at is None else issued_at,
        )

    def to_payload(self, round_number: int, total_rounds: int) -> dict:
        # Never includes the correct answer
        return {
            "question": self.question_text,
            "image": self.image,
            "options": list(self.options),
            "round": round_number,
            "totalRounds": total_rounds,
        }


@dataclass
class Participant:
    id: str
    name: str
    score: int = 0
    assignment: Optional[QuestionAssignment] = None

    def to_entry(self) -> dict:
        return {"id": self.id, "name": self.name, "score": self.score}


@dataclass
class JoinResult:
    participant: Participant
    became_host: bool
    session_active: bool
    queued: bool


@dataclass
class LeaveEffects:
    participant: Participant
    was_host: bool
    new_host_id: Optional[str] = None
    roster_empty: bool = False


class Session:
    """Membership, host and round bookkeeping for one trivia session.

    Holds no timers; RoundScheduler drives phase changes and is the only
    caller that mutates scores and assignments.
    """

    def __init__(self, session_id: str = config.DEFAULT_SESSION_ID,
                 total_rounds: int = config.TOTAL_ROUNDS):
        self.id = session_id
        self.total_rounds = total_rounds
        self.phase = Phase.IDLE
        self.current_round = 0
        self.host_id: Optional[str] = None
        self.roster: Dict[str, Participant] = {}  # insertion order = join order
        self.waiting: Dict[str, None] = {}  # ordered set of connection ids
        self.last_activity = time.time()

    @property
    def is_active(self) -> bool:
        return self.phase in (Phase.ROUND_ACTIVE, Phase.ROUND_SETTLING)

    def touch(self):
        """Update last activity timestamp."""
        self.last_activity = time.time()

    def is_expired(self, ttl: float = config.SESSION_TTL_SECONDS) -> bool:
        return not self.roster and time.time() - self.last_activity > ttl

    def join(self, connection_id: str, name: str) -> JoinResult:
        became_host = not self.roster
        participant = Participant(id=connection_id, name=name)
        self.roster[connection_id] = participant
        if became_host:
            self.host_id = connection_id

        queued = self.is_active
        if queued:
            self.waiting[connection_id] = None
        else:
            self.waiting.pop(connection_id, None)

        logger.info("Participant '%s' (%s) joined session %s", name, connection_id, self.id)
        return JoinResult(participant, became_host, self.is_active, queued)

    def leave(self, connection_id: str) -> Optional[LeaveEffects]:
        participant = self.roster.pop(connection_id, None)
        if participant is None:
            return None
        self.waiting.pop(connection_id, None)

        was_host = connection_id == self.host_id
        effects = LeaveEffects(participant, was_host)
        if not self.roster:
            self.host_id = None
            effects.roster_empty = True
        elif was_host:
            self.host_id = next(iter(self.roster))
            effects.new_host_id = self.host_id
            logger.info("Host of session %s passed to %s", self.id, self.host_id)

        logger.info("Participant '%s' (%s) left session %s", participant.name, connection_id, self.id)
        return effects

    def promote_waiting_to_active(self) -> List[str]:
        promoted = [cid for cid in self.waiting if cid in self.roster]
        self.waiting.clear()
        return promoted

    def is_waiting(self, connection_id: str) -> bool:
        return connection_id in self.waiting

    def leaderboard(self) -> List[dict]:
        # sorted() is stable, so ties keep join order
        ranked = sorted(self.roster.values(), key=lambda p: p.score, reverse=True)
        return [p.to_entry() for p in ranked]

    def all_answered(self) -> bool:
        return all(
            p.assignment.answered for p in self.roster.values() if p.assignment is not None
        )

    def reset_scores(self):
        for participant in self.roster.values():
            participant.score = 0

    def clear_assignments(self):
        for participant in self.roster.values():
            participant.assignment = None

    def reset_to_idle(self):
        """Back to the lobby: round 0, no assignments, host = oldest participant."""
        self.phase = Phase.IDLE
        self.current_round = 0
        self.clear_assignments()
        self.host_id = next(iter(self.roster), None)
        if not self.roster:
            self.waiting.clear()

    def snapshot(self) -> dict:
        return {
            "id": self.id,
            "phase": self.phase.value,
            "isActive": self.is_active,
            "currentRound": self.current_round,
            "totalRounds": self.total_rounds,
            "hostId": self.host_id,
            "players": [p.to_entry() for p in self.roster.values()],
            "waiting": list(self.waiting),
        }
