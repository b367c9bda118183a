#!/usr/bin/env python
"""Merge card definitions from a JSON file into the cards collection."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Mapping, Sequence, Tuple

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ruibot.catalog import CARD_TYPES, Catalog, validate_card_id  # noqa: E402
from ruibot.errors import StoreError, ValidationError  # noqa: E402
from ruibot.models import CardDef, deserialize_card, serialize_card  # noqa: E402
from ruibot.rarity import RARITIES  # noqa: E402
from ruibot.store import JsonFileStore  # noqa: E402
from ruibot.utils import path_from_env  # noqa: E402

logger = logging.getLogger("import_cards")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    load_dotenv()
    parser = argparse.ArgumentParser(description="Validate card definitions and merge them into cards.json.")
    parser.add_argument("source", type=Path, help="JSON file holding a list of card objects.")
    parser.add_argument(
        "--store-dir",
        type=Path,
        help="Directory holding the collection files (defaults to RUIBOT_DATA_DIR or ./data).",
    )
    parser.add_argument(
        "--skip-id-check",
        action="store_true",
        help="Accept ids that do not follow the card id format.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be imported without writing.",
    )
    parser.add_argument("--verbose", action="store_true", help="Increase logging verbosity.")
    return parser.parse_args(argv)


def read_source(path: Path) -> List[Mapping[str, object]]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(payload, Mapping) and isinstance(payload.get("cards"), list):
        payload = payload["cards"]
    if not isinstance(payload, list):
        raise ValueError(f"{path} must contain a JSON list of cards.")
    return [entry for entry in payload if isinstance(entry, Mapping)]


def check_card(card: CardDef, *, check_ids: bool) -> None:
    if card.rarity not in RARITIES:
        raise ValidationError(f"Unknown rarity `{card.rarity}`.")
    if card.type not in CARD_TYPES:
        raise ValidationError(f"Unknown card type `{card.type}`.")
    if not card.group or not card.member:
        raise ValidationError("Group and member are required.")
    if check_ids:
        validate_card_id(card.id, card.rarity)


def merge_cards(
    existing: Catalog,
    entries: Sequence[Mapping[str, object]],
    *,
    check_ids: bool = True,
) -> Tuple[List[CardDef], List[str]]:
    """Add valid, unseen cards to ``existing``. Returns (added, rejected messages)."""
    added: List[CardDef] = []
    rejected: List[str] = []
    for entry in entries:
        if not entry.get("id"):
            rejected.append(f"entry without id: {dict(entry)!r}")
            continue
        card = deserialize_card(entry)
        card = replace(card, id=card.id.strip().upper())
        try:
            check_card(card, check_ids=check_ids)
            existing.add(card)
        except ValidationError as exc:
            rejected.append(f"{card.id}: {exc.message}")
            continue
        added.append(card)
    return added, rejected


async def run(args: argparse.Namespace) -> int:
    store_dir = args.store_dir or path_from_env("RUIBOT_DATA_DIR") or Path("data")
    store = JsonFileStore(store_dir)
    try:
        entries = await store.load("cards")
    except StoreError:
        logger.error("Existing cards in %s could not be read; nothing was imported.", store.path_for("cards"))
        return 1
    catalog = Catalog(deserialize_card(entry) for entry in entries if isinstance(entry, Mapping))
    added, rejected = merge_cards(catalog, read_source(args.source), check_ids=not args.skip_id_check)

    for message in rejected:
        logger.warning("Rejected %s", message)
    for card in added:
        logger.debug("Adding %s (%s, %s)", card.id, card.label, card.rarity)

    if args.dry_run:
        logger.info("Dry run: %d card(s) would be added, %d rejected.", len(added), len(rejected))
        return 0
    if added:
        await store.save("cards", [serialize_card(card) for card in catalog])
    logger.info("Added %d card(s) to %s; %d rejected.", len(added), store.path_for("cards"), len(rejected))
    return 1 if rejected and not added else 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format="%(message)s")
    return asyncio.run(run(args))


if __name__ == "__main__":
    raise SystemExit(main())
