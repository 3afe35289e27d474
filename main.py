"""CLI entry point: turn one mood entry into a generated music clip."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import random
import sys
import time
import uuid
from datetime import datetime
from pathlib import Path

from moodsound.config import EngineSettings
from moodsound.models.mood import MoodEntry
from moodsound.services.engine import MoodSoundEngine
from moodsound.services.parameter_mapper import ParameterMapper
from moodsound.services.storage import FileStorage
from moodsound.synth.synthesizer import ProceduralSynthesizer

log = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate a short music clip from a mood rating, emotion tags and a reflection."
    )
    parser.add_argument(
        "--rating", "-r",
        type=int,
        required=True,
        choices=range(1, 11),
        metavar="1-10",
        help="Mood rating from 1 (lowest) to 10.",
    )
    parser.add_argument(
        "--tags",
        type=str,
        default="",
        help="Comma-separated emotion tags, e.g. 'happy,grateful'.",
    )
    parser.add_argument(
        "--text", "-t",
        type=str,
        default="",
        help="Free-text reflection for the entry.",
    )
    parser.add_argument(
        "--user",
        type=str,
        default="cli",
        help="User id the artifact is stored under (default: cli).",
    )
    parser.add_argument(
        "--offline",
        action="store_true",
        help="Skip external providers and use the procedural synthesizer only.",
    )
    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Seed for the parameter mapper and synthesizer random sources.",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging.",
    )
    parser.add_argument(
        "--output-dir",
        type=str,
        default=None,
        help="Output directory (default: outputs/YYYY-MM-DD/HH-MM-SS).",
    )
    return parser.parse_args(argv)


def setup_output_dir(custom_dir: str | None = None) -> Path:
    """Create output directory with timestamp."""
    if custom_dir:
        output_dir = Path(custom_dir)
    else:
        now = datetime.now()
        output_dir = Path("outputs") / now.strftime("%Y-%m-%d") / now.strftime("%H-%M-%S")

    output_dir.mkdir(parents=True, exist_ok=True)
    return output_dir


def setup_logging(output_dir: Path, verbose: bool = False) -> None:
    """Setup logging to both console and file."""
    log_level = logging.DEBUG if verbose else logging.INFO
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)

    file_handler = logging.FileHandler(output_dir / "execution.log")
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    output_dir = setup_output_dir(args.output_dir)
    setup_logging(output_dir, args.verbose)

    start_time = time.time()
    start_datetime = datetime.now().isoformat()
    seed = args.seed if args.seed is not None else random.randrange(2**32)
    tags = [t.strip() for t in args.tags.split(",") if t.strip()]

    log.info("=" * 80)
    log.info("Starting mood-to-sound generation")
    log.info(f"  - Timestamp: {start_datetime}")
    log.info(f"  - Rating: {args.rating}")
    log.info(f"  - Tags: {tags}")
    log.info(f"  - Reflection: {'<provided>' if args.text else '<none>'}")
    log.info(f"  - Offline: {args.offline}")
    log.info(f"  - Seed: {seed}")
    log.info(f"  - Output directory: {output_dir}")
    log.info("=" * 80)

    settings = EngineSettings.from_env()
    if args.offline:
        settings = settings.without_providers()
    settings = settings.model_copy(update={"storage_dir": str(output_dir / "storage")})

    engine = MoodSoundEngine.from_settings(
        settings,
        storage=FileStorage(settings.storage_dir),
        mapper=ParameterMapper(random.Random(seed)),
        synthesizer=ProceduralSynthesizer(settings.sample_rate, random.Random(seed)),
    )
    entry = MoodEntry(
        entry_id=str(uuid.uuid4()),
        mood_rating=args.rating,
        emotion_tags=tags,
        reflection=args.text,
    )

    # same seed as the engine's mapper, so this matches the mapping generation uses
    parameters = ParameterMapper(random.Random(seed)).map(entry)
    music = await engine.request_generation(args.user, entry)

    elapsed_time = time.time() - start_time
    log.info("=" * 80)
    log.info(f"Generation finished in {elapsed_time:.2f}s (source={music.source})")
    log.info("=" * 80)

    audio = await engine.get_audio(music)
    if audio:
        audio_file = output_dir / f"output.{music.audio_format}"
        audio_file.write_bytes(audio)
        log.info(f"Audio saved to {audio_file} ({len(audio)} bytes)")
    else:
        log.error("No audio was produced")

    output_file = output_dir / "result.json"
    output_file.write_text(music.model_dump_json(indent=2))
    log.info(f"Result saved to {output_file}")

    params_file = output_dir / "params.json"
    params = {
        "timestamp": start_datetime,
        "rating": args.rating,
        "tags": tags,
        "text": args.text,
        "offline": args.offline,
        "seed": seed,
        "music_parameters": parameters.model_dump(mode="json"),
        "runtime_seconds": elapsed_time,
    }
    params_file.write_text(json.dumps(params, indent=2))
    log.info(f"Parameters saved to {params_file}")

    print(music.model_dump_json(indent=2))
    return 0 if audio else 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
