from fastapi import FastAPI, WebSocket, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import uvicorn
import logging

import config
config.setup_logging()

from socket_manager import socket_manager

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting trivia rounds backend (%d questions loaded)", len(socket_manager.questions))
    socket_manager.start_cleanup_loop()
    yield
    socket_manager.stop_cleanup_loop()
    logger.info("Shutting down trivia rounds backend")


app = FastAPI(title="Trivia Rounds API", lifespan=lifespan)


@app.websocket("/ws/{client_id}")
async def default_session_endpoint(websocket: WebSocket, client_id: str):
    await socket_manager.connect(websocket, config.DEFAULT_SESSION_ID, client_id)


@app.websocket("/ws/{session_id}/{client_id}")
async def session_endpoint(websocket: WebSocket, session_id: str, client_id: str):
    await socket_manager.connect(websocket, session_id, client_id)


@app.get("/sessions/{session_id}")
async def get_session(session_id: str):
    handle = socket_manager.get_session(session_id)
    if not handle:
        raise HTTPException(status_code=404, detail="Session not found")
    return handle.session.snapshot()


# Configure CORS
if config.ALLOWED_ORIGINS.strip():
    origins = [o.strip() for o in config.ALLOWED_ORIGINS.split(",")]
else:
    origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["GET"],
    allow_headers=["Content-Type"],
)


@app.get("/")
async def root():
    return {"message": "Trivia Rounds API is running"}


@app.get("/health")
async def health():
    return {"status": "healthy", "questions": len(socket_manager.questions)}


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
