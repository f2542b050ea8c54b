from datetime import datetime, timezone
from typing import Any, Optional, Protocol
import re
import time
import asyncio
import logging

import config
from question_bank import QuestionBank
from scoring import clamp_time_left, score_answer
from session import Phase, QuestionAssignment, Session

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    """Outbound side of the transport. Sends are fire-and-forget."""

    async def broadcast_all(self, event: str, payload: Optional[dict] = None) -> None: ...

    async def unicast(self, connection_id: str, event: str, payload: Optional[dict] = None) -> None: ...

    def is_live(self, connection_id: str) -> bool: ...


def _sanitize(text: str) -> str:
    text = re.sub(r'<[^>]+>', '', text)
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text.strip()


def _cancel(task: Optional[asyncio.Task]):
    if task and not task.done():
        task.cancel()


class RoundScheduler:
    """Drives one Session through its rounds.

    Every public intent and every timer firing runs under ``self.lock``, so
    transitions never interleave. Timers are tasks; whichever transition
    supersedes a timer cancels it before scheduling the next one.
    """

    def __init__(self, notifier: Notifier, questions: QuestionBank,
                 session_id: str = config.DEFAULT_SESSION_ID,
                 round_duration: float = config.ROUND_DURATION,
                 total_rounds: int = config.TOTAL_ROUNDS,
                 settle_delay: float = config.SETTLE_DELAY,
                 reset_delay: float = config.RESET_DELAY,
                 trust_client_time_left: bool = config.TRUST_CLIENT_TIME_LEFT):
        self.notifier = notifier
        self.questions = questions
        self.session = Session(session_id, total_rounds)
        self.round_duration = round_duration
        self.settle_delay = settle_delay
        self.reset_delay = reset_delay
        self.trust_client_time_left = trust_client_time_left
        self.lock = asyncio.Lock()
        self.round_task: Optional[asyncio.Task] = None
        self.settle_task: Optional[asyncio.Task] = None
        self.reset_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Inbound intents
    # ------------------------------------------------------------------

    async def join(self, connection_id: str, name: Any) -> bool:
        if not isinstance(name, str):
            return False
        name = _sanitize(name)
        if not name or len(name) > config.MAX_NAME_LENGTH:
            logger.warning("Rejected join from %s: invalid name", connection_id)
            return False

        async with self.lock:
            s = self.session
            if connection_id not in s.roster and len(s.roster) >= config.MAX_PLAYERS_PER_SESSION:
                logger.warning("Session %s is full, ignoring join from %s", s.id, connection_id)
                return False
            s.touch()
            result = s.join(connection_id, name)

            if result.became_host:
                await self.notifier.unicast(connection_id, "set-as-host")
            await self.notifier.broadcast_all("player-joined", {"id": connection_id, "name": name})
            await self.notifier.unicast(connection_id, "game-status", {
                "isActive": result.session_active,
                "currentRound": s.current_round,
                "totalRounds": s.total_rounds,
                "canJoin": not result.session_active,
            })
            await self._broadcast_leaderboard()
            if result.queued:
                await self.notifier.unicast(connection_id, "wait-for-next-round")
            return True

    async def start(self, connection_id: str) -> bool:
        async with self.lock:
            s = self.session
            if connection_id != s.host_id or s.phase != Phase.IDLE:
                return False
            if not len(self.questions):
                logger.warning("Cannot start session %s: question bank is empty", s.id)
                return False

            s.touch()
            s.reset_scores()
            s.current_round = 1
            logger.info("Game started in session %s (%d rounds)", s.id, s.total_rounds)
            await self.notifier.broadcast_all("game-started", {
                "totalRounds": s.total_rounds,
                "currentRound": s.current_round,
            })
            await self._begin_round()
            await self._broadcast_leaderboard()
            return True

    async def submit_answer(self, connection_id: str, answer: Any, time_left: Any) -> bool:
        async with self.lock:
            s = self.session
            if s.phase != Phase.ROUND_ACTIVE:
                return False
            participant = s.roster.get(connection_id)
            if participant is None or participant.assignment is None:
                return False
            assignment = participant.assignment
            if assignment.answered:
                return False
            time_left = self._resolve_time_left(assignment, time_left)
            if time_left is None:
                return False

            s.touch()
            assignment.answered = True
            correct = answer == assignment.correct_answer
            points = score_answer(correct, time_left, self.round_duration)
            participant.score += points

            await self.notifier.unicast(connection_id, "answer-result", {
                "correct": correct,
                "points": points,
                "correctAnswer": assignment.correct_answer,
            })
            await self._broadcast_leaderboard()

            if s.all_answered():
                await self._complete_round()
            return True

    async def chat(self, connection_id: str, message: Any) -> bool:
        if not isinstance(message, str):
            return False
        message = _sanitize(message)[:config.MAX_CHAT_LENGTH]
        if not message:
            return False

        async with self.lock:
            participant = self.session.roster.get(connection_id)
            if participant is None:
                return False
            self.session.touch()
            await self.notifier.broadcast_all("new-chat-message", {
                "sender": participant.name,
                "message": message,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            })
            return True

    async def leave(self, connection_id: str) -> bool:
        async with self.lock:
            s = self.session
            effects = s.leave(connection_id)
            if effects is None:
                return False
            s.touch()

            await self.notifier.broadcast_all("player-left", {"id": connection_id})
            if effects.roster_empty:
                self.cancel_timers()
                s.reset_to_idle()
                logger.info("Session %s is empty, reset to idle", s.id)
                await self.notifier.broadcast_all("game-reset")
                return True

            await self._broadcast_leaderboard()
            if effects.new_host_id:
                await self.notifier.unicast(effects.new_host_id, "set-as-host")
            if s.phase == Phase.ROUND_ACTIVE and s.all_answered():
                await self._complete_round()
            return True

    # ------------------------------------------------------------------
    # Transitions (lock held)
    # ------------------------------------------------------------------

    async def _begin_round(self):
        s = self.session
        _cancel(self.round_task)

        for connection_id in s.promote_waiting_to_active():
            if self.notifier.is_live(connection_id):
                await self.notifier.unicast(connection_id, "join-current-game")

        s.phase = Phase.ROUND_ACTIVE
        issued_at = time.time()
        for participant in s.roster.values():
            participant.assignment = QuestionAssignment.from_record(
                self.questions.random_question(), issued_at
            )
            await self.notifier.unicast(
                participant.id, "new-question",
                participant.assignment.to_payload(s.current_round, s.total_rounds),
            )

        self.round_task = asyncio.create_task(self._run_round_timer())
        logger.info("Session %s round %d/%d started", s.id, s.current_round, s.total_rounds)
        await self.notifier.broadcast_all("round-timer-start", {"duration": self.round_duration})

    async def _expire_round(self):
        s = self.session
        if s.phase != Phase.ROUND_ACTIVE:
            return
        for participant in s.roster.values():
            assignment = participant.assignment
            if assignment is None or assignment.answered:
                continue
            assignment.answered = True
            await self.notifier.unicast(participant.id, "answer-result", {
                "correct": False,
                "points": 0,
                "correctAnswer": assignment.correct_answer,
                "timedOut": True,
            })
        await self._complete_round()

    async def _complete_round(self):
        _cancel(self.round_task)
        self.round_task = None
        self.session.phase = Phase.ROUND_SETTLING
        _cancel(self.settle_task)
        self.settle_task = asyncio.create_task(self._run_settle_timer())

    async def _advance(self):
        s = self.session
        if s.current_round < s.total_rounds:
            s.current_round += 1
            await self._begin_round()
        else:
            await self._end_game()

    async def _end_game(self):
        s = self.session
        s.phase = Phase.ENDED
        s.clear_assignments()
        results = s.leaderboard()
        logger.info("Game ended in session %s", s.id)
        await self.notifier.broadcast_all("game-ended", {"results": results})
        _cancel(self.reset_task)
        self.reset_task = asyncio.create_task(self._run_reset_timer())

    async def _reset(self):
        s = self.session
        s.reset_to_idle()
        logger.info("Session %s reset, host is %s", s.id, s.host_id)
        if s.host_id:
            await self.notifier.unicast(s.host_id, "set-as-host")
        await self.notifier.broadcast_all("game-reset")

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    async def _run_round_timer(self):
        try:
            await asyncio.sleep(self.round_duration)
            async with self.lock:
                self.round_task = None
                logger.debug("Round timer fired in session %s", self.session.id)
                await self._expire_round()
        except asyncio.CancelledError:
            pass

    async def _run_settle_timer(self):
        try:
            await asyncio.sleep(self.settle_delay)
            async with self.lock:
                self.settle_task = None
                await self._advance()
        except asyncio.CancelledError:
            pass

    async def _run_reset_timer(self):
        try:
            await asyncio.sleep(self.reset_delay)
            async with self.lock:
                self.reset_task = None
                await self._reset()
        except asyncio.CancelledError:
            pass

    def cancel_timers(self):
        for task in (self.round_task, self.settle_task, self.reset_task):
            _cancel(task)
        self.round_task = None
        self.settle_task = None
        self.reset_task = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_time_left(self, assignment: QuestionAssignment, time_left: Any) -> Optional[float]:
        if not self.trust_client_time_left:
            time_left = self.round_duration - (time.time() - assignment.issued_at)
        elif isinstance(time_left, bool) or not isinstance(time_left, (int, float)):
            return None
        return clamp_time_left(time_left, self.round_duration)

    async def _broadcast_leaderboard(self):
        await self.notifier.broadcast_all("leaderboard-update", {"leaderboard": self.session.leaderboard()})
