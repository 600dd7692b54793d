#!/usr/bin/env python3
"""
Seed the Triage Corpus
======================

Loads resolved tickets from a YAML file into the corpus used for
classification and similarity search.

Usage:
    python scripts/seed_corpus.py [path/to/seed.yaml]
"""

import asyncio
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import yaml

DEFAULT_SEED_FILE = Path(__file__).parent.parent / "data" / "seed_corpus.yaml"


def parse_timestamp(value):
    """YAML gives datetimes for bare timestamps and strings for quoted ones."""
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def load_entries(path: Path) -> list[dict]:
    """Read the ``entries`` list from a seed file."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return data.get("entries", [])


async def main(seed_file: Path) -> None:
    from src.config import settings
    from src.core import ValidationException
    from src.infrastructure.database import close_database, create_tables, init_database
    from src.main import build_engine, build_repositories
    from src.shared.infrastructure.logging import setup_logging
    from src.triage.infrastructure import PolicyConfigManager

    setup_logging(settings.log_level, settings.environment)

    if settings.storage_backend != "database":
        print("STORAGE_BACKEND is not 'database'; nothing would persist. Aborting.")
        return

    entries = load_entries(seed_file)
    print(f"Loaded {len(entries)} entries from {seed_file}")

    init_database()
    await create_tables()

    policy_manager = PolicyConfigManager()
    policy_manager.load(settings.policy_config_path)
    engine = build_engine(build_repositories(settings.storage_backend), policy_manager)

    added = 0
    try:
        for raw in entries:
            try:
                await engine.add_corpus_entry(
                    title=raw["title"],
                    description=raw.get("description", ""),
                    category=raw["category"],
                    resolution=raw["resolution"],
                    department=raw.get("department"),
                    priority=raw.get("priority", "medium"),
                    resolved_at=parse_timestamp(raw.get("resolved_at")),
                )
                added += 1
            except ValidationException as e:
                print(f"Skipped '{raw.get('title')}': {e.message}")
        print(f"Added {added} entries. Corpus size: {await engine.corpus_size()}")
    finally:
        await close_database()


if __name__ == "__main__":
    path = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_SEED_FILE
    asyncio.run(main(path))
