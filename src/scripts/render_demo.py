#!/usr/bin/env python3
"""
Render Demo Reel Script

Main entrypoint: python src/scripts/render_demo.py track1.wav track2.flac ...

- Tracks play in the order given, capped per segment, with fades and gaps
- Optional recurring watermark (--tag)
- Outputs: demo.wav, demo.flac and timeline.json in --output-dir
"""

import argparse
import sys
import logging
from pathlib import Path

# Add src/ to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from demoreel.analyze.decode import probe_source
from demoreel.config import Config
from demoreel.errors import DemoReelError
from demoreel.render.render import RenderEngine

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Render ordered tracks into a mastered demo reel")
    parser.add_argument("tracks", nargs="+", help="Audio files in playback order")
    parser.add_argument("--tag", help="Watermark clip mixed in at regular intervals")
    parser.add_argument("--tag-interval", type=float, help="Seconds between watermark inserts")
    parser.add_argument("--normalize", action="store_true", help="Level tracks before mixing")
    parser.add_argument("--output-dir", default="data/demos", help="Where outputs are written")
    parser.add_argument("--config", help="Path to demoreel.toml")
    return parser.parse_args(argv)


def _log_track_listing(paths) -> None:
    for idx, path in enumerate(paths, 1):
        try:
            info = probe_source(Path(path).read_bytes())
        except OSError as e:
            logger.warning(f"{idx:2d}. {path}: unreadable ({e})")
            continue
        if info is None:
            logger.info(f"{idx:2d}. {Path(path).name}: unknown container")
            continue
        minutes = int(info["duration_seconds"] // 60)
        seconds = int(info["duration_seconds"] % 60)
        logger.info(f"{idx:2d}. {Path(path).name} [{info['format']}] {minutes}:{seconds:02d}")


def main(argv=None):
    """Main rendering entrypoint."""
    try:
        args = _parse_args(argv)
        logger.info("🎚️  Starting demo reel rendering...")

        config = Config.load(args.config)
        logger.info(f"Config loaded: {config}")

        overrides = {}
        if args.normalize:
            overrides["normalize"] = True
        if args.tag_interval is not None:
            overrides["tag_interval"] = args.tag_interval

        _log_track_listing(args.tracks)

        engine = RenderEngine(config)
        outputs = engine.render_files(
            args.tracks,
            args.output_dir,
            tag_path=args.tag,
            progress_callback=lambda pct: logger.info(f"Progress: {pct}%"),
            **overrides,
        )

        logger.info(f"✅ Demo reel rendered: {outputs['wav']}")
        return 0

    except KeyboardInterrupt:
        logger.warning("Rendering interrupted by user")
        return 130
    except DemoReelError as e:
        logger.error(f"Rendering failed: {e}")
        return 1
    except Exception as e:
        logger.error(f"Rendering failed: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
