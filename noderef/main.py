"""NodeRef — FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Query, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from noderef.backends.alfresco import AlfrescoBackend
from noderef.config import settings
from noderef.db.database import Database
from noderef.models.state import AggregateSearchState
from noderef.orchestrator.dispatcher import Dispatcher
from noderef.orchestrator.session import SearchSession

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

db = Database(settings.database_path)
session = SearchSession(
    Dispatcher(
        AlfrescoBackend(),
        page_size=settings.page_size,
        timeout=settings.source_timeout_seconds,
    ),
    history=db,
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await db.connect()
    unsubscribe = session.subscribe(_on_state_change)
    yield
    unsubscribe()
    await session.drain()
    await db.close()


app = FastAPI(
    title="NodeRef",
    description="Federated search across content repositories",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Request / Response models ---


class SourceRequest(BaseModel):
    address: str = Field(min_length=1)
    display_name: str = Field(min_length=1)


class SourceResponse(BaseModel):
    id: int
    address: str
    display_name: str


class SelectionRequest(BaseModel):
    source_ids: list[int]


class SearchRequest(BaseModel):
    query: str
    source_ids: list[int] | None = None


class ResultItemResponse(BaseModel):
    id: str
    name: str
    is_folder: bool
    is_file: bool
    canonical_ref: str
    resource_type: str
    path: str
    modified_at: datetime
    modified_by: str
    created_at: datetime | None
    created_by: str | None
    parent_id: str | None
    mime_type: str | None
    attributes: dict[str, Any]
    source_id: int
    source_name: str


class PaginationResponse(BaseModel):
    count: int
    has_more_items: bool
    total_items: int | None
    window_size: int


class SourcePaginationResponse(BaseModel):
    source_id: int
    address: str
    display_name: str
    window_size: int
    skip_count: int
    has_more_items: bool
    total_items: int | None


class SearchStateResponse(BaseModel):
    query: str
    status: str
    is_loading: bool
    is_loading_more: bool
    error: str | None
    items: list[ResultItemResponse]
    pagination: PaginationResponse
    per_source: list[SourcePaginationResponse]
    source_errors: dict[int, str]


class LoadMoreResponse(BaseModel):
    dispatched: bool
    state: SearchStateResponse


class HistoryResponse(BaseModel):
    id: int
    query: str
    results_count: int | None
    executed_at: str


def _state_response(state: AggregateSearchState) -> SearchStateResponse:
    return SearchStateResponse(
        query=state.query_text,
        status=state.status.value,
        is_loading=state.is_loading,
        is_loading_more=state.is_loading_more,
        error=state.error,
        items=[ResultItemResponse.model_validate(item, from_attributes=True) for item in state.items],
        pagination=PaginationResponse.model_validate(
            state.combined_pagination, from_attributes=True
        ),
        per_source=[
            SourcePaginationResponse.model_validate(t, from_attributes=True)
            for t in state.per_source.values()
        ],
        source_errors=dict(state.source_errors),
    )


# --- Routes ---


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/api/sources", response_model=list[SourceResponse])
async def list_sources():
    sources = await db.list_sources()
    return [SourceResponse(id=s.id, address=s.address, display_name=s.display_name) for s in sources]


@app.post("/api/sources", response_model=SourceResponse, status_code=201)
async def create_source(req: SourceRequest):
    source_id = await db.add_source(req.address, req.display_name)
    return SourceResponse(id=source_id, address=req.address, display_name=req.display_name)


@app.get("/api/sources/selection", response_model=SelectionRequest)
async def get_selection():
    return SelectionRequest(source_ids=await db.get_selected_source_ids())


@app.put("/api/sources/selection", response_model=SelectionRequest)
async def set_selection(req: SelectionRequest):
    known = await db.get_sources(req.source_ids)
    await db.set_selected_source_ids([s.id for s in known])
    return SelectionRequest(source_ids=[s.id for s in known])


@app.post("/api/search", response_model=SearchStateResponse)
async def run_search(req: SearchRequest):
    """Run a federated query against the given sources, or the saved selection."""
    source_ids = req.source_ids
    if source_ids is None:
        source_ids = await db.get_selected_source_ids()
    sources = await db.get_sources(source_ids)
    if not sources:
        raise HTTPException(status_code=400, detail="No sources selected")

    logger.info("Searching %d sources for %r", len(sources), req.query)
    state = await session.query(req.query, sources)
    return _state_response(state)


@app.post("/api/search/more", response_model=LoadMoreResponse)
async def load_more():
    dispatched = await session.load_more()
    return LoadMoreResponse(dispatched=dispatched, state=_state_response(session.state))


@app.get("/api/search", response_model=SearchStateResponse)
async def get_search():
    return _state_response(session.state)


@app.delete("/api/search", response_model=SearchStateResponse)
async def reset_search():
    session.reset()
    return _state_response(session.state)


@app.get("/api/history", response_model=list[HistoryResponse])
async def list_history(limit: int = Query(settings.history_limit, ge=1)):
    rows = await db.list_history(limit)
    return [
        HistoryResponse(
            id=r["id"],
            query=r["query"],
            results_count=r["results_count"],
            executed_at=str(r["executed_at"]),
        )
        for r in rows
    ]


# --- WebSocket ---

_ws_connections: list[WebSocket] = []
_ws_sends: set[asyncio.Task] = set()


@app.websocket("/ws/search")
async def search_ws(websocket: WebSocket):
    """Stream the search state to the client after every change."""
    await websocket.accept()
    _ws_connections.append(websocket)
    try:
        await websocket.send_json(_state_response(session.state).model_dump(mode="json"))
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        if websocket in _ws_connections:
            _ws_connections.remove(websocket)


def _on_state_change(state: AggregateSearchState) -> None:
    if not _ws_connections:
        return
    message = _state_response(state).model_dump(mode="json")
    task = asyncio.get_running_loop().create_task(_broadcast(message))
    _ws_sends.add(task)
    task.add_done_callback(_ws_sends.discard)


async def _broadcast(message: dict) -> None:
    """Send a message to every connected WebSocket client."""
    for ws in list(_ws_connections):
        try:
            await ws.send_json(message)
        except Exception as exc:
            logger.debug("Dropping WebSocket client: %s", exc)
            if ws in _ws_connections:
                _ws_connections.remove(ws)
