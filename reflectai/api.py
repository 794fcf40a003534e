"""
FastAPI application exposing the journal core to the mobile client.

Run with `uvicorn reflectai.api:create_app --factory`.
"""

import datetime as dt
import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Optional

from dotenv import load_dotenv
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import get_current_user_id
from .config import Settings, get_settings
from .errors import AnalysisError, DecodeError, InvalidArgument, InvalidState, JournalError, StorageError
from .models import AIAnalysis, JournalEntry, MoodCounts
from .schemas import EntryRequest, HealthResponse, ProcessEntryResponse, UpdateEntryRequest
from .service import JournalComponents, JournalService, build_components

# Load environment variables from .env if present
load_dotenv()

logger = logging.getLogger(__name__)

router = APIRouter()

_ERROR_STATUS = {
    InvalidArgument: status.HTTP_400_BAD_REQUEST,
    DecodeError: status.HTTP_400_BAD_REQUEST,
    InvalidState: status.HTTP_401_UNAUTHORIZED,
    StorageError: status.HTTP_503_SERVICE_UNAVAILABLE,
    AnalysisError: status.HTTP_502_BAD_GATEWAY,
}


async def journal_error_handler(request: Request, exc: JournalError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in _ERROR_STATUS.items() if isinstance(exc, error_type)),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if status_code >= 500:
        logger.error(f"{type(exc).__name__} while handling {request.url.path}: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def get_journal(request: Request, user_id: str = Depends(get_current_user_id)) -> JournalService:
    components: JournalComponents = request.app.state.components
    return components.for_user(user_id)


# --- API Endpoints ---

@router.get("/health", response_model=HealthResponse)
async def health_check():
    return HealthResponse(status="healthy")


@router.get("/api/journal/entries", response_model=List[JournalEntry])
async def list_entries(journal: JournalService = Depends(get_journal)):
    return await journal.list_entries()


@router.post("/api/journal/entries", response_model=JournalEntry, status_code=status.HTTP_201_CREATED)
async def save_entry(body: EntryRequest, journal: JournalService = Depends(get_journal)):
    """Create the entry for a date, or replace the content of the one already there."""
    return await journal.save_entry(body.content, body.date, body.mood.value, body.title)


@router.get("/api/journal/entries/{entry_id}", response_model=JournalEntry)
async def get_entry(entry_id: str, journal: JournalService = Depends(get_journal)):
    entry = await journal.get_entry(entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Entry not found")
    return entry


@router.put("/api/journal/entries/{entry_id}", response_model=JournalEntry)
async def update_entry(entry_id: str, body: UpdateEntryRequest, journal: JournalService = Depends(get_journal)):
    entry = await journal.update_entry(
        entry_id,
        content=body.content,
        mood=body.mood.value if body.mood else None,
        title=body.title,
    )
    if entry is None:
        raise HTTPException(status_code=404, detail="Entry not found")
    return entry


@router.delete("/api/journal/entries/{entry_id}")
async def delete_entry(entry_id: str, journal: JournalService = Depends(get_journal)) -> Dict[str, str]:
    await journal.delete_entry(entry_id)
    return {"status": "success", "message": "Journal entry deleted successfully."}


@router.get("/api/journal/dates/{day}", response_model=List[JournalEntry])
async def entries_for_date(day: dt.date, journal: JournalService = Depends(get_journal)):
    return await journal.entries_for_date(day)


@router.get("/api/journal/calendar", response_model=Dict[str, bool])
async def calendar(
    start: dt.date = Query(..., description="First date of the range (inclusive)"),
    end: dt.date = Query(..., description="Last date of the range (inclusive)"),
    journal: JournalService = Depends(get_journal),
):
    return await journal.week_overview(start, end)


@router.get("/api/mood/counts", response_model=MoodCounts)
async def mood_counts(refresh: bool = False, journal: JournalService = Depends(get_journal)):
    return await journal.mood_counts(refresh=refresh)


@router.post("/api/journal/entries/{entry_id}/analysis", response_model=AIAnalysis)
async def analyze_entry(entry_id: str, journal: JournalService = Depends(get_journal)):
    analysis = await journal.analyze(entry_id)
    if analysis is None:
        raise HTTPException(status_code=404, detail="Entry not found")
    return analysis


@router.post("/api/journal/process", response_model=ProcessEntryResponse)
async def process_entry(body: EntryRequest, journal: JournalService = Depends(get_journal)):
    """Save the entry, then classify its mood and analyze it."""
    result = await journal.process_entry(body.content, body.date, body.mood.value, body.title)
    return ProcessEntryResponse(entry=result.entry, analysis=result.analysis, error=result.error)


# --- Application factory ---

def create_app(components: Optional[JournalComponents] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the application. Components passed in are used as-is and left open on
    shutdown; otherwise they are built from settings at startup and closed on exit.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application startup...")
        owns_components = app.state.components is None
        if owns_components:
            app.state.components = await build_components(app.state.settings)
            logger.info("Journal components initialized")
        yield
        logger.info("Application shutdown...")
        if owns_components:
            await app.state.components.aclose()
            app.state.components = None
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="ReflectAI Journal",
        description="Journal entries, mood counts and AI feedback for the ReflectAI app.",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings or get_settings()
    app.state.components = components

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(JournalError, journal_error_handler)
    app.include_router(router)
    return app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run("reflectai.api:create_app", factory=True, host="0.0.0.0", port=8002, reload=True)
