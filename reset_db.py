"""Reset the metadata index and the thumbnail cache.

Usage:
    python reset_db.py                 # delete all rows, then VACUUM
    python reset_db.py --images-only   # keep tags and meta
    python reset_db.py --hard          # drop and recreate every table
    python reset_db.py --force         # skip the confirmation prompt
"""
import argparse
import logging
from typing import Callable

from app import Services, build_services
from config import get_settings
from database import clear_index
from utils import setup_logging

logger = logging.getLogger(__name__)


def reset(services: Services, hard: bool = False, images_only: bool = False) -> int:
    """Empty the index and every cached thumbnail. Returns the entries removed."""
    clear_index(services.store.engine, hard=hard, images_only=images_only)
    return services.cache.clear()


def _confirm(question: str, ask: Callable[[str], str]) -> bool:
    answer = ask(f"{question} (y/N): ")
    return answer.strip().lower() in ("y", "yes")


def main(argv=None, ask: Callable[[str], str] = input) -> int:
    parser = argparse.ArgumentParser(description="Reset the metadata index")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--hard", action="store_true", help="Drop and recreate all tables")
    mode.add_argument(
        "--images-only", action="store_true", help="Only clear images and their tag links"
    )
    parser.add_argument("--force", action="store_true", help="Do not ask for confirmation")
    args = parser.parse_args(argv)

    settings = get_settings()
    setup_logging(settings.log_level)

    if args.hard:
        question = f"Drop every table in {settings.database_path}?"
    elif args.images_only:
        question = "Clear all images and image tags?"
    else:
        question = "Delete all images, tags and meta?"
    question += f" Cached thumbnails in {settings.cache_directory} are removed too."

    if not args.force:
        try:
            confirmed = _confirm(question, ask)
        except EOFError:
            logger.error("No interactive input, rerun with --force")
            return 1
        if not confirmed:
            logger.info("Cancelled")
            return 0

    services = build_services(settings)
    removed = reset(services, hard=args.hard, images_only=args.images_only)
    logger.info("Reset done, %d thumbnails removed", removed)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
