"""FastAPI endpoints for players, challenges, moves and websocket sync."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
import logging
import threading
from typing import Any

from fastapi import Depends, FastAPI, Header, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from .config import BackendSettings, load_settings
from .directory import SessionDirectory
from .errors import (
    Conflict,
    GameError,
    GameOver,
    IllegalMove,
    InvalidName,
    InvalidTarget,
    NotYourTurn,
    PlayerNotFound,
    SessionNotFound,
    StorageUnavailable,
    Unauthorized,
)
from .models import (
    AcceptIntent,
    Intent,
    MoveIntent,
    Player,
    ReadyIntent,
    Snapshot,
    session_from_record,
    session_to_record,
)
from .security import generate_token, hash_token, verify_token
from .store import SESSIONS, GameStore, Subscription, create_store

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[GameError], int] = {
    Unauthorized: 403,
    NotYourTurn: 409,
    IllegalMove: 409,
    GameOver: 409,
    Conflict: 409,
    InvalidTarget: 422,
    InvalidName: 422,
    SessionNotFound: 404,
    PlayerNotFound: 404,
    StorageUnavailable: 503,
}


class RegisterPlayerRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class RegisterPlayerResponse(BaseModel):
    player_id: str
    token: str


class PlayerResponse(BaseModel):
    id: str
    name: str


class PlayersResponse(BaseModel):
    players: list[PlayerResponse]


class RenamePlayerRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)


class ChallengeRequest(BaseModel):
    target_id: str = Field(min_length=1)


class TransitionRequest(BaseModel):
    revision: int = Field(ge=1)


class MoveRequest(TransitionRequest):
    cell: int


class SessionResponse(BaseModel):
    session: dict[str, Any]
    revision: int


class SessionsResponse(BaseModel):
    sessions: list[SessionResponse]


def _player_response(player: Player) -> PlayerResponse:
    return PlayerResponse(id=player.id, name=player.name)


def _session_response(snapshot: Snapshot) -> SessionResponse:
    return SessionResponse(session=session_to_record(snapshot.session), revision=snapshot.revision)


class SessionWebSocketHub:
    """Per-session websocket fan-out; each socket only ever sees increasing revisions."""

    def __init__(self) -> None:
        self._connections: dict[str, dict[WebSocket, int]] = defaultdict(dict)

    async def connect(self, session_id: str, websocket: WebSocket) -> None:
        await websocket.accept()
        self._connections[session_id][websocket] = 0
        logger.debug("websocket joined session %s", session_id)

    def disconnect(self, session_id: str, websocket: WebSocket) -> None:
        connections = self._connections.get(session_id)
        if connections is None:
            return
        connections.pop(websocket, None)
        if not connections:
            self._connections.pop(session_id, None)
        logger.debug("websocket left session %s", session_id)

    async def send_snapshot(self, websocket: WebSocket, snapshot: Snapshot) -> None:
        connections = self._connections.get(snapshot.session.id, {})
        if connections.get(websocket, 0) >= snapshot.revision:
            return
        if websocket in connections:
            connections[websocket] = snapshot.revision
        await websocket.send_json({"type": "session.snapshot", **_session_response(snapshot).model_dump()})

    async def broadcast_snapshot(self, snapshot: Snapshot) -> None:
        session_id = snapshot.session.id
        stale_connections: list[WebSocket] = []
        for websocket in list(self._connections.get(session_id, {})):
            try:
                await self.send_snapshot(websocket, snapshot)
            except RuntimeError:
                stale_connections.append(websocket)
        for websocket in stale_connections:
            self.disconnect(session_id=session_id, websocket=websocket)


class SessionFeed:
    """Relays every committed session snapshot from the store subscription to the hub.

    Runs on a worker thread because store subscriptions block; broadcasts are
    handed back to the event loop that owns the websockets.
    """

    def __init__(self, store: GameStore, hub: SessionWebSocketHub, poll_interval: float = 0.2) -> None:
        self._store = store
        self._hub = hub
        self._poll_interval = poll_interval
        self._stopped = threading.Event()
        self._thread: threading.Thread | None = None
        self._subscription: Subscription | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop
        self._stopped.clear()
        self._subscription = self._store.subscribe(SESSIONS)
        self._thread = threading.Thread(target=self._run, name="session-feed", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stopped.set()
        if self._thread is not None:
            self._thread.join(timeout=self._poll_interval * 5)
            self._thread = None
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    def _run(self) -> None:
        assert self._subscription is not None and self._loop is not None
        while not self._stopped.is_set():
            try:
                event = self._subscription.poll(self._poll_interval)
            except StorageUnavailable:
                logger.warning("session feed lost storage, retrying in %.2fs", self._poll_interval)
                self._stopped.wait(self._poll_interval)
                continue
            if event is None or event.record is None:
                continue
            snapshot = Snapshot(session=session_from_record(event.record), revision=event.revision)
            asyncio.run_coroutine_threadsafe(self._hub.broadcast_snapshot(snapshot), self._loop)


def create_app(store: GameStore | None = None, settings: BackendSettings | None = None) -> FastAPI:
    app_settings = settings if settings is not None else load_settings()
    game_store = store if store is not None else create_store(app_settings.database_url)
    directory = SessionDirectory(store=game_store)
    websocket_hub = SessionWebSocketHub()
    session_feed = SessionFeed(store=game_store, hub=websocket_hub)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        session_feed.start(asyncio.get_running_loop())
        try:
            yield
        finally:
            session_feed.stop()

    app = FastAPI(title="TicTacToe API", version="0.1.0", lifespan=lifespan)
    app.state.settings = app_settings
    app.state.directory = directory
    app.state.websocket_hub = websocket_hub
    app.state.session_feed = session_feed

    @app.exception_handler(GameError)
    async def game_error_handler(request: Request, exc: GameError) -> JSONResponse:
        status_code = ERROR_STATUS.get(type(exc), 400)
        return JSONResponse(
            status_code=status_code,
            content={"detail": {"code": exc.code, "message": str(exc)}},
        )

    def get_directory() -> SessionDirectory:
        return directory

    def authenticated_player(
        x_player_id: str = Header(min_length=1),
        x_player_token: str = Header(min_length=1),
        local_directory: SessionDirectory = Depends(get_directory),
    ) -> str:
        try:
            player = local_directory.get_player(x_player_id)
        except PlayerNotFound as exc:
            raise Unauthorized("Unknown player") from exc
        if not verify_token(x_player_token, player.token_hash, app_settings.server_salt):
            raise Unauthorized("Player token is invalid")
        return player.id

    async def transition(session_id: str, actor_id: str, intent: Intent, revision: int) -> SessionResponse:
        snapshot = await run_in_threadpool(directory.arbiter.apply, session_id, actor_id, intent, revision)
        return _session_response(snapshot)

    @app.post("/api/players", response_model=RegisterPlayerResponse)
    def register_player(
        payload: RegisterPlayerRequest,
        local_directory: SessionDirectory = Depends(get_directory),
    ) -> RegisterPlayerResponse:
        token = generate_token()
        player = local_directory.register_player(
            name=payload.name,
            token_hash=hash_token(token, app_settings.server_salt),
        )
        return RegisterPlayerResponse(player_id=player.id, token=token)

    @app.get("/api/players", response_model=PlayersResponse)
    def list_players(local_directory: SessionDirectory = Depends(get_directory)) -> PlayersResponse:
        return PlayersResponse(players=[_player_response(player) for player in local_directory.list_players()])

    @app.patch("/api/players/{player_id}", response_model=PlayerResponse)
    def rename_player(
        player_id: str,
        payload: RenamePlayerRequest,
        actor_id: str = Depends(authenticated_player),
        local_directory: SessionDirectory = Depends(get_directory),
    ) -> PlayerResponse:
        player = local_directory.rename_player(player_id=player_id, actor_id=actor_id, name=payload.name)
        return _player_response(player)

    @app.post("/api/sessions", response_model=SessionResponse)
    def create_challenge(
        payload: ChallengeRequest,
        actor_id: str = Depends(authenticated_player),
        local_directory: SessionDirectory = Depends(get_directory),
    ) -> SessionResponse:
        snapshot = local_directory.create_challenge(challenger_id=actor_id, target_id=payload.target_id)
        return _session_response(snapshot)

    @app.get("/api/sessions", response_model=SessionsResponse)
    def list_sessions(
        player_id: str = Query(min_length=1),
        local_directory: SessionDirectory = Depends(get_directory),
    ) -> SessionsResponse:
        return SessionsResponse(
            sessions=[_session_response(snapshot) for snapshot in local_directory.list_visible_sessions(player_id)]
        )

    @app.get("/api/sessions/{session_id}", response_model=SessionResponse)
    def get_session(
        session_id: str,
        local_directory: SessionDirectory = Depends(get_directory),
    ) -> SessionResponse:
        return _session_response(local_directory.arbiter.read(session_id))

    @app.post("/api/sessions/{session_id}/accept", response_model=SessionResponse)
    async def accept_challenge(
        session_id: str,
        payload: TransitionRequest,
        actor_id: str = Depends(authenticated_player),
    ) -> SessionResponse:
        return await transition(session_id, actor_id, AcceptIntent(), payload.revision)

    @app.post("/api/sessions/{session_id}/ready", response_model=SessionResponse)
    async def mark_ready(
        session_id: str,
        payload: TransitionRequest,
        actor_id: str = Depends(authenticated_player),
    ) -> SessionResponse:
        return await transition(session_id, actor_id, ReadyIntent(), payload.revision)

    @app.post("/api/sessions/{session_id}/moves", response_model=SessionResponse)
    async def submit_move(
        session_id: str,
        payload: MoveRequest,
        actor_id: str = Depends(authenticated_player),
    ) -> SessionResponse:
        return await transition(session_id, actor_id, MoveIntent(cell=payload.cell), payload.revision)

    @app.websocket("/ws/sessions/{session_id}")
    async def session_ws(
        websocket: WebSocket,
        session_id: str,
        local_directory: SessionDirectory = Depends(get_directory),
    ) -> None:
        try:
            await run_in_threadpool(local_directory.arbiter.read, session_id)
        except SessionNotFound:
            await websocket.close(code=1008)
            return

        await websocket_hub.connect(session_id=session_id, websocket=websocket)
        # read after joining so no commit falls between the snapshot and the feed
        snapshot = await run_in_threadpool(local_directory.arbiter.read, session_id)
        await websocket_hub.send_snapshot(websocket=websocket, snapshot=snapshot)

        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            websocket_hub.disconnect(session_id=session_id, websocket=websocket)

    return app


app = create_app()
