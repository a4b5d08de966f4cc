import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from prompter.backend import Backend
from prompter.errors import ChatBusyError, PollFetchError, PrompterError
from prompter.feed_poller import FeedPoller

logger = logging.getLogger("prompter_backend")


class SynthesizeRequest(BaseModel):
    query: str = Field(min_length=1)


class AuditRequest(BaseModel):
    schema_text: Optional[str] = Field(default=None, alias="schema")
    example: Optional[str] = None

    model_config = {"populate_by_name": True}


class DeriveRequest(BaseModel):
    example: Optional[str] = None


class ChatRequest(BaseModel):
    text: str = Field(min_length=1)


class FeedRequest(BaseModel):
    symbol: str = Field(min_length=1)


def _feed_view(feed_id: str, poller: FeedPoller) -> dict:
    error = None
    if poller.error is not None:
        error = {
            "message": poller.error.message,
            "category": poller.error.category,
            "hint": poller.error.hint,
        }
    return {
        "feed_id": feed_id,
        "symbol": poller.symbol,
        "status": poller.status.value,
        "snapshot": poller.snapshot.model_dump(by_alias=True) if poller.snapshot else None,
        "error": error,
    }


def create_app(backend: Optional[Backend] = None) -> FastAPI:
    """Create the workbench API around one Backend."""
    be = backend or Backend()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await be.aclose()

    app = FastAPI(title="JSON Prompter", lifespan=lifespan)
    app.state.backend = be

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Allow all origins for dev
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PrompterError)
    async def prompter_error_handler(request: Request, exc: PrompterError):
        body = {"detail": exc.message}
        if isinstance(exc, PollFetchError):
            body["category"] = exc.category
            body["hint"] = exc.hint
        logger.info(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=502, content=body)

    # === SYNTHESIS ===

    @app.post("/synthesize")
    async def synthesize(req: SynthesizeRequest):
        if not req.query.strip():
            raise HTTPException(status_code=400, detail="query is empty")
        artifact = await be.synthesize(req.query)
        return artifact.model_dump(by_alias=True)

    @app.get("/artifact")
    async def current_artifact():
        if be.artifact is None:
            raise HTTPException(status_code=404, detail="no artifact synthesized yet")
        return be.artifact.model_dump(by_alias=True)

    # === AUDIT ===

    @app.post("/audit/validate")
    async def validate(req: AuditRequest):
        return {"report": await be.validate(req.schema_text, req.example)}

    @app.post("/audit/derive")
    async def derive(req: DeriveRequest):
        return {"schema": await be.derive_schema(req.example)}

    @app.post("/audit/test")
    async def prompt_test():
        return {"output": await be.run_prompt_test(), "harness": be.auditor.build_harness()}

    @app.get("/audit/schema")
    async def active_schema():
        return {"schema": be.auditor.active_schema, "derived": be.auditor.derived_schema is not None}

    # === CHAT ===

    @app.post("/chat")
    async def chat(req: ChatRequest):
        if not req.text.strip():
            raise HTTPException(status_code=400, detail="message text is empty")
        try:
            stream = be.chat_stream(req.text)
        except ChatBusyError as e:
            raise HTTPException(status_code=409, detail=e.message)
        return StreamingResponse(stream, media_type="text/plain")

    @app.get("/chat")
    async def chat_state():
        conversation = be.conversation
        return {
            "state": conversation.state,
            "greeting": conversation.greeting,
            "turns": [t.model_dump(mode="json") for t in conversation.turns],
        }

    # === FEEDS ===

    @app.put("/feeds/{feed_id}")
    async def start_feed(feed_id: str, req: FeedRequest, wait: bool = False):
        try:
            poller = await be.start_feed(feed_id, req.symbol, wait=wait)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return _feed_view(feed_id, poller)

    @app.get("/feeds/{feed_id}")
    async def get_feed(feed_id: str):
        poller = be.feed(feed_id)
        if poller is None:
            raise HTTPException(status_code=404, detail=f"feed {feed_id} not found")
        return _feed_view(feed_id, poller)

    @app.delete("/feeds/{feed_id}")
    async def stop_feed(feed_id: str):
        if not await be.stop_feed(feed_id):
            raise HTTPException(status_code=404, detail=f"feed {feed_id} not found")
        return {"status": "stopped", "feed_id": feed_id}

    # === LIBRARY ===

    @app.get("/history")
    async def history():
        return be.search_history()

    @app.delete("/history")
    async def clear_history():
        be.library.clear_history()
        return {"status": "cleared"}

    @app.get("/favorites")
    async def favorites():
        return [f.model_dump(by_alias=True) for f in be.library.favorites()]

    @app.post("/favorites/toggle")
    async def toggle_favorite():
        try:
            saved = be.toggle_favorite()
        except ValueError as e:
            raise HTTPException(status_code=409, detail=str(e))
        if saved is None:
            return {"saved": False}
        return {"saved": True, "favorite": saved.model_dump(by_alias=True)}

    @app.post("/favorites/{favorite_id}/open")
    async def open_favorite(favorite_id: str):
        artifact = be.open_favorite(favorite_id)
        if artifact is None:
            raise HTTPException(status_code=404, detail=f"favorite {favorite_id} not found")
        return artifact.model_dump(by_alias=True)

    @app.delete("/favorites/{favorite_id}")
    async def remove_favorite(favorite_id: str):
        if not be.library.remove_favorite(favorite_id):
            raise HTTPException(status_code=404, detail=f"favorite {favorite_id} not found")
        return {"status": "removed", "id": favorite_id}

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
