"""Run the MoodSound HTTP service with uvicorn."""

from __future__ import annotations

import logging
import os
import sys

import uvicorn

from moodsound.api.routes import create_app
from moodsound.config import EngineSettings
from moodsound.services.engine import MoodSoundEngine

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    stream=sys.stderr,
)
log = logging.getLogger(__name__)


def main() -> None:
    settings = EngineSettings.from_env()
    if settings.storage_dir:
        log.info(f"Persisting music under {settings.storage_dir}")
    else:
        log.warning("MOODSOUND_STORAGE_DIR not set, generated music is kept in memory only")

    app = create_app(MoodSoundEngine.from_settings(settings))
    uvicorn.run(
        app,
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
        log_level="info",
    )


if __name__ == "__main__":
    main()
