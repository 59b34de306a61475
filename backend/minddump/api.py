"""
Copyright © 2026 Vladimir Vaulin-Belskii. All rights reserved.

API router definitions for health, classification, saved sessions and the
recording WebSocket.
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from .browser_speech import BrowserSpeechCapability
from .categorizer import categorize_transcript, get_categorizer
from .config import settings
from .db import get_session
from .errors import BackendMisconfigured, MindDumpError
from .repositories import get_thought_session, load_sessions, prepend_session
from .schemas import ProcessResponse, ThoughtSession, ThoughtSessionCreate
from .shell import RecordingShell

logger = logging.getLogger(__name__)

router = APIRouter()

PROCESS_FAILED_MESSAGE = "Failed to process thoughts"


@router.get("/health")
async def health():
    """Liveness probe for the API service."""
    return {"status": "ok", "service": settings.app_name}


@router.get("/status")
async def status_check(session: AsyncSession = Depends(get_session)):
    """Report health of the database and the language model backend."""
    db_status = "ok"
    try:
        await session.execute(text("select 1"))
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        db_status = "error"

    llm_status = "ok"
    try:
        if not await get_categorizer().health():
            llm_status = "unreachable"
    except BackendMisconfigured as e:
        logger.warning("Language model backend misconfigured: %s", e)
        llm_status = "misconfigured"

    return {
        "database": db_status,
        "llm": llm_status,
        "provider": settings.llm_provider,
    }


@router.post("/api/process", response_model=ProcessResponse)
async def process_endpoint(request: Request):
    """Sort a transcript into actions, decisions, worries and wins."""
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    transcript = payload.get("transcript") if isinstance(payload, dict) else None
    if not isinstance(transcript, str) or not transcript.strip():
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": "Transcript is required"})

    try:
        categories = await categorize_transcript(transcript)
    except BackendMisconfigured as e:
        logger.error("Cannot process thoughts: %s", e)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"error": str(e)})
    except MindDumpError as e:
        logger.error("Error processing thoughts: %s", e)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": str(e) or PROCESS_FAILED_MESSAGE},
        )
    except Exception as e:
        logger.exception("Unexpected error processing thoughts: %r", e)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": PROCESS_FAILED_MESSAGE},
        )

    return ProcessResponse(categories=categories)


@router.get("/api/sessions", response_model=list[ThoughtSession])
async def list_sessions_endpoint(session: AsyncSession = Depends(get_session)):
    """Saved sessions, newest first."""
    return await load_sessions(session)


@router.post("/api/sessions", response_model=ThoughtSession, status_code=status.HTTP_201_CREATED)
async def create_session_endpoint(
    payload: ThoughtSessionCreate,
    session: AsyncSession = Depends(get_session),
):
    record = ThoughtSession.create(payload.transcript, payload.categories)
    await prepend_session(session, record)
    await session.commit()
    logger.info("Saved session %s", record.id)
    return record


@router.get("/api/sessions/{session_id}", response_model=ThoughtSession)
async def get_session_endpoint(session_id: str, session: AsyncSession = Depends(get_session)):
    record = await get_thought_session(session, session_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return record


@router.websocket("/ws/record")
async def websocket_record(websocket: WebSocket):
    """Drive one recording screen flow over WebSocket.

    The first message must be the browser's ``capability`` event. After that,
    speech events go to the capability and everything else is a shell command.
    """
    await websocket.accept()
    capability = BrowserSpeechCapability(websocket)
    try:
        hello = await websocket.receive_json()
        if not isinstance(hello, dict) or hello.get("event") != "capability":
            raise ValueError(f"expected capability event, got {hello!r}")
        await capability.dispatch(hello)
        logger.info(
            "Recording client connected: supported=%s, permission=%s",
            capability.supported, capability.permission.value,
        )
    except WebSocketDisconnect:
        logger.info("Client disconnected before sending initialization.")
        return
    except Exception as e:
        logger.error("Failed to receive WebSocket initialization: %s", e)
        try:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        except Exception:
            pass
        return

    shell = RecordingShell(websocket, capability)
    await shell.open()
    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError as e:
                logger.warning("Ignoring malformed WebSocket message: %s", e)
                continue
            if not isinstance(message, dict):
                logger.warning("Ignoring non-object WebSocket message: %r", message)
                continue
            try:
                if await capability.dispatch(message):
                    continue
                await shell.handle_command(message)
            except WebSocketDisconnect:
                raise
            except Exception as e:
                logger.error("Error handling WebSocket message %r: %s", message, e)
    except WebSocketDisconnect:
        logger.info("Recording client disconnected")
    finally:
        capability.close()
        await shell.close()
