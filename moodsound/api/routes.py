"""REST API over the mood-to-sound engine."""

from __future__ import annotations

import logging

from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from pydantic import BaseModel

from moodsound.models.mood import MoodEntry
from moodsound.models.music import GeneratedMusic, MusicParameters
from moodsound.services.engine import MoodSoundEngine
from moodsound.services.storage import PersistenceError

log = logging.getLogger(__name__)

MEDIA_TYPES = {
    "wav": "audio/wav",
    "mp3": "audio/mpeg",
    "flac": "audio/flac",
}


class GenerateRequest(BaseModel):
    user_id: str
    entry: MoodEntry


class GenerateResponse(BaseModel):
    entry_id: str
    status: str  # "processing" or "queued"


def _storage_failure(e: PersistenceError) -> HTTPException:
    log.error(f"Storage failure: {e}")
    return HTTPException(status_code=500, detail="Storage unavailable")


def create_app(engine: MoodSoundEngine | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    engine = engine or MoodSoundEngine.from_settings()

    app = FastAPI(
        title="MoodSound API",
        description="Turns mood journal entries into generated ambient music",
        version="0.1.0",
    )
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health() -> dict:
        return {
            "status": "ok",
            "generating": engine.is_generating(),
            "queue_length": engine.queue_length(),
        }

    @app.post("/api/parameters")
    async def preview_parameters(entry: MoodEntry) -> MusicParameters:
        """Musical parameters the entry maps to, without generating audio."""
        return engine.preview_parameters(entry)

    @app.post("/api/generate")
    async def generate(
        request: GenerateRequest,
        background_tasks: BackgroundTasks,
    ) -> GenerateResponse:
        """Start generating music for a mood entry.

        The work runs in the background; poll /api/status for the result.
        """
        status = "queued" if engine.is_generating() else "processing"
        background_tasks.add_task(_run_generation, engine, request.user_id, request.entry)
        log.info(f"Accepted generation for entry {request.entry.entry_id} ({status})")
        return GenerateResponse(entry_id=request.entry.entry_id, status=status)

    @app.get("/api/status/{user_id}/{entry_id}")
    async def get_status(user_id: str, entry_id: str) -> GeneratedMusic:
        try:
            music = await engine.find_music_for_entry(user_id, entry_id)
        except PersistenceError as e:
            raise _storage_failure(e)
        if music is None:
            raise HTTPException(status_code=404, detail="No music generated for this entry yet")
        return music

    @app.get("/api/music/{user_id}")
    async def list_music(user_id: str) -> list[GeneratedMusic]:
        try:
            return await engine.list_music(user_id)
        except PersistenceError as e:
            raise _storage_failure(e)

    @app.get("/api/music/{user_id}/{music_id}")
    async def get_music(user_id: str, music_id: str) -> GeneratedMusic:
        try:
            music = await engine.retrieve_music(user_id, music_id)
        except PersistenceError as e:
            raise _storage_failure(e)
        if music is None:
            raise HTTPException(status_code=404, detail="Music not found")
        return music

    @app.get("/api/audio/{user_id}/{music_id}")
    async def get_audio(user_id: str, music_id: str):
        """Serve the audio bytes of an artifact."""
        try:
            music = await engine.retrieve_music(user_id, music_id)
            data = await engine.get_audio(music) if music else None
        except PersistenceError as e:
            raise _storage_failure(e)
        if not data:
            raise HTTPException(status_code=404, detail="Audio file not found")
        media_type = MEDIA_TYPES.get(music.audio_format, "application/octet-stream")
        return Response(content=data, media_type=media_type)

    @app.delete("/api/music/{user_id}/{music_id}")
    async def delete_music(user_id: str, music_id: str) -> dict:
        if not await engine.delete_music(user_id, music_id):
            raise HTTPException(status_code=404, detail="Music not found")
        return {"music_id": music_id, "deleted": True}

    @app.get("/api/providers")
    async def providers() -> dict:
        return engine.provider_status()

    return app


async def _run_generation(engine: MoodSoundEngine, user_id: str, entry: MoodEntry) -> None:
    """Background task: run or queue generation for one entry."""
    try:
        music = await engine.request_generation(user_id, entry)
        if music is None:
            log.info(f"[{entry.entry_id}] Queued behind the generation in progress")
        else:
            log.info(f"[{entry.entry_id}] Generation finished (source={music.source}, audio={music.audio_url or 'none'})")
    except Exception as e:
        log.error(f"Error during generation for entry {entry.entry_id}: {e}", exc_info=True)
