from fastapi import WebSocket, WebSocketDisconnect
from typing import Dict, List, Optional
import json
import time
import asyncio
import logging

import config
from question_bank import QuestionBank, question_bank
from round_scheduler import RoundScheduler

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Live WebSockets of one session; the notifier the scheduler talks to."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        self.connections: Dict[str, WebSocket] = {}
        # WS rate limiting: client_id -> list of timestamps
        self.msg_timestamps: Dict[str, list] = {}

    def add(self, client_id: str, websocket: WebSocket) -> Optional[WebSocket]:
        """Register a socket, returning the one it replaced (if any)."""
        previous = self.connections.get(client_id)
        self.connections[client_id] = websocket
        return previous

    def remove(self, client_id: str, websocket: Optional[WebSocket] = None) -> bool:
        """Drop a connection. With ``websocket`` given, only if it is still the current one."""
        current = self.connections.get(client_id)
        if current is None or (websocket is not None and current is not websocket):
            return False
        del self.connections[client_id]
        self.msg_timestamps.pop(client_id, None)
        return True

    def is_live(self, connection_id: str) -> bool:
        return connection_id in self.connections

    def allow_message(self, client_id: str) -> bool:
        """Per-client rate limiting over a sliding one-second window."""
        now = time.time()
        timestamps = self.msg_timestamps.setdefault(client_id, [])
        timestamps[:] = [t for t in timestamps if now - t < 1.0]
        if len(timestamps) >= config.WS_RATE_LIMIT_PER_SEC:
            return False
        timestamps.append(now)
        return True

    async def broadcast_all(self, event: str, payload: Optional[dict] = None):
        message = {"type": event, **(payload or {})}
        disconnected = []
        for client_id, ws in list(self.connections.items()):
            try:
                await ws.send_json(message)
            except Exception:
                disconnected.append((client_id, ws))
        for client_id, ws in disconnected:
            logger.info("Dropping unreachable client %s from session %s", client_id, self.session_id)
            self.remove(client_id, ws)

    async def unicast(self, connection_id: str, event: str, payload: Optional[dict] = None):
        ws = self.connections.get(connection_id)
        if ws is None:
            return
        try:
            await ws.send_json({"type": event, **(payload or {})})
        except Exception:
            logger.info("Dropping unreachable client %s from session %s", connection_id, self.session_id)
            self.remove(connection_id, ws)


class SessionHandle:
    def __init__(self, session_id: str, questions: QuestionBank, **overrides):
        self.registry = ConnectionRegistry(session_id)
        self.scheduler = RoundScheduler(self.registry, questions, session_id=session_id, **overrides)

    @property
    def session(self):
        return self.scheduler.session


class SocketManager:
    def __init__(self, questions: QuestionBank = question_bank):
        self.questions = questions
        self.sessions: Dict[str, SessionHandle] = {}
        self.scheduler_overrides: dict = {}
        self._cleanup_task: Optional[asyncio.Task] = None
        self.allowed_origins: List[str] = []

    def start_cleanup_loop(self):
        """Start the background session cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_expired_sessions())

    def stop_cleanup_loop(self):
        if self._cleanup_task:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    async def _cleanup_expired_sessions(self):
        """Periodically remove empty sessions nobody has touched for a while."""
        while True:
            try:
                await asyncio.sleep(config.SESSION_CLEANUP_INTERVAL)
                for session_id in self.expired_session_ids():
                    self.close_session(session_id)
                    logger.info("Cleaned up expired session %s", session_id)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Error in session cleanup loop")

    def expired_session_ids(self) -> List[str]:
        return [
            session_id for session_id, handle in self.sessions.items()
            if session_id != config.DEFAULT_SESSION_ID
            and not handle.registry.connections
            and handle.session.is_expired()
        ]

    def get_session(self, session_id: str) -> Optional[SessionHandle]:
        return self.sessions.get(session_id)

    def get_or_create_session(self, session_id: str) -> Optional[SessionHandle]:
        handle = self.sessions.get(session_id)
        if handle is None:
            if len(self.sessions) >= config.MAX_SESSIONS:
                return None
            handle = SessionHandle(session_id, self.questions, **self.scheduler_overrides)
            self.sessions[session_id] = handle
            logger.info("Session created: %s", session_id)
        return handle

    def close_session(self, session_id: str):
        handle = self.sessions.pop(session_id, None)
        if handle:
            handle.scheduler.cancel_timers()

    def clear(self):
        for session_id in list(self.sessions):
            self.close_session(session_id)

    async def connect(self, websocket: WebSocket, session_id: str, client_id: str):
        # Validate WebSocket origin
        origin = websocket.headers.get("origin", "")
        if self.allowed_origins and origin not in self.allowed_origins:
            logger.warning("Rejected WebSocket from unauthorized origin: %s", origin)
            await websocket.close(code=1008)
            return

        handle = self.get_or_create_session(session_id)
        if handle is None:
            logger.warning("Session limit reached, rejecting %s for session %s", client_id, session_id)
            await websocket.close(code=1013)
            return

        await websocket.accept()
        previous = handle.registry.add(client_id, websocket)
        if previous is not None:
            logger.info("Client %s reconnected to session %s, replacing old socket", client_id, session_id)
            try:
                await previous.close()
            except Exception:
                pass

        try:
            while True:
                data = await websocket.receive_text()

                # Enforce message size limit
                if len(data) > config.MAX_WS_MESSAGE_SIZE:
                    logger.warning("Oversized message from client %s dropped", client_id)
                    continue

                if not handle.registry.allow_message(client_id):
                    logger.warning("Rate limit hit by client %s", client_id)
                    continue

                try:
                    message = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Malformed JSON from client %s: %s", client_id, data[:100])
                    continue

                if not isinstance(message, dict):
                    continue
                await self.handle_message(handle, client_id, message)
        except WebSocketDisconnect:
            logger.info("Client %s disconnected from session %s", client_id, session_id)
        except Exception:
            logger.exception("WebSocket error for client %s in session %s", client_id, session_id)
        finally:
            handle.registry.remove(client_id, websocket)
            # A newer socket for the same client owns the participant now
            if not handle.registry.is_live(client_id):
                await handle.scheduler.leave(client_id)

    async def handle_message(self, handle: SessionHandle, client_id: str, message: dict):
        msg_type = message.get("type")
        scheduler = handle.scheduler

        if msg_type == "join":
            await scheduler.join(client_id, message.get("name"))

        elif msg_type == "start":
            await scheduler.start(client_id)

        elif msg_type == "submit-answer":
            await scheduler.submit_answer(client_id, message.get("answer"), message.get("timeLeft"))

        elif msg_type == "chat":
            await scheduler.chat(client_id, message.get("message"))

        else:
            logger.debug("Ignoring unknown message type %r from %s", msg_type, client_id)


socket_manager = SocketManager()
