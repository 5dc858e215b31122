"""
Schema migration and validation for the primary document.

parse_document() never raises. Malformed parts are replaced by defaults and
listed in ParseResult.defaulted, so the caller can quarantine the original.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from atomic_review.domain.constants import CURRENT_SCHEMA_VERSION
from atomic_review.domain.errors import DataValidationError
from atomic_review.domain.models import (
    Card,
    OrphanRecord,
    Queue,
    ReviewLogEntry,
    Settings,
    StoreData,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

DOCUMENT_PATH = "<document>"


@dataclass
class ParseResult:
    data: StoreData
    defaulted: list[str] = field(default_factory=list)  # field paths replaced by defaults
    migrated_from: int | None = None

    @property
    def clean(self) -> bool:
        return not self.defaulted


# ---------- Migrations ----------

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def camel_to_snake(name: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", name).lower()


def _snake_keys(record: Any) -> Any:
    if not isinstance(record, dict):
        return record
    return {camel_to_snake(k) if isinstance(k, str) else k: v for k, v in record.items()}


def _snake_card(card: Any) -> Any:
    card = _snake_keys(card)
    if isinstance(card, dict) and isinstance(card.get("schedules"), dict):
        # Schedule keys are queue ids, not field names
        card["schedules"] = {qid: _snake_keys(s) for qid, s in card["schedules"].items()}
    return card


def _snake_queue(queue: Any) -> Any:
    queue = _snake_keys(queue)
    if isinstance(queue, dict):
        for key in ("criteria", "stats"):
            if key in queue:
                queue[key] = _snake_keys(queue[key])
    return queue


def _snake_orphan(orphan: Any) -> Any:
    orphan = _snake_keys(orphan)
    if isinstance(orphan, dict):
        if "card_data" in orphan:
            orphan["card_data"] = _snake_card(orphan["card_data"])
        if "resolution" in orphan:
            orphan["resolution"] = _snake_keys(orphan["resolution"])
    return orphan


def _map_list(value: Any, fn: Callable[[Any], Any]) -> Any:
    return [fn(item) for item in value] if isinstance(value, list) else value


def _migrate_v0(doc: dict[str, Any]) -> dict[str, Any]:
    # Initial version: nothing to convert
    return doc


def _migrate_v1(doc: dict[str, Any]) -> dict[str, Any]:
    """Version 1 documents use camelCase record keys."""
    settings = _snake_keys(doc.get("settings"))
    if isinstance(settings, dict) and "fsrs_params" in settings:
        settings["fsrs_params"] = _snake_keys(settings["fsrs_params"])

    cards = doc.get("cards")
    if isinstance(cards, dict):
        cards = {path: _snake_card(card) for path, card in cards.items()}

    migrated = dict(doc)
    if "settings" in doc:
        migrated["settings"] = settings
    if "cards" in doc:
        migrated["cards"] = cards
    if "queues" in doc:
        migrated["queues"] = _map_list(doc["queues"], _snake_queue)
    if "reviews" in doc:
        migrated["reviews"] = _map_list(doc["reviews"], _snake_keys)
    if "orphans" in doc:
        migrated["orphans"] = _map_list(doc["orphans"], _snake_orphan)
    return migrated


# Keyed by the version being migrated *from*
MIGRATIONS: dict[int, Callable[[dict[str, Any]], dict[str, Any]]] = {
    0: _migrate_v0,
    1: _migrate_v1,
}


def migrate(doc: dict[str, Any]) -> tuple[dict[str, Any], int | None]:
    """
    Bring a raw document up to CURRENT_SCHEMA_VERSION.

    Returns:
        (migrated document, version it started from or None if already current)
    """
    version = doc.get("version")
    if not isinstance(version, int) or isinstance(version, bool) or version < 0:
        version = 0

    if version > CURRENT_SCHEMA_VERSION:
        logger.warning(
            f"Stored schema v{version} is newer than supported v{CURRENT_SCHEMA_VERSION}; "
            "reading it as current"
        )
        return doc, None

    start = version
    while version < CURRENT_SCHEMA_VERSION:
        doc = MIGRATIONS[version](doc)
        version += 1
        logger.info(f"Migrated stored data from schema v{version - 1} to v{version}")
    doc = {**doc, "version": version}
    return doc, (start if start != CURRENT_SCHEMA_VERSION else None)


# ---------- Validation ----------


def _summarize(error: ValidationError) -> str:
    first = error.errors()[0]
    loc = ".".join(str(p) for p in first.get("loc", ()))
    return f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))


def parse_record(model: type[M], value: Any, path: str) -> M:
    try:
        return model.model_validate(value)
    except ValidationError as e:
        raise DataValidationError(path, _summarize(e)) from e


def _parse_settings(raw: Any, defaulted: list[str]) -> Settings:
    if raw is None:
        return Settings()
    if not isinstance(raw, dict):
        defaulted.append("settings")
        return Settings()

    valid: dict[str, Any] = {}
    for name in Settings.model_fields:
        if name not in raw:
            continue
        try:
            parse_record(Settings, {name: raw[name]}, f"settings.{name}")
            valid[name] = raw[name]
        except DataValidationError as e:
            defaulted.append(e.path)
    return Settings.model_validate(valid)


def _parse_list(model: type[M], raw: Any, path: str, defaulted: list[str]) -> list[M]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        defaulted.append(path)
        return []

    items: list[M] = []
    for i, item in enumerate(raw):
        try:
            items.append(parse_record(model, item, f"{path}[{i}]"))
        except DataValidationError as e:
            defaulted.append(e.path)
    return items


def _parse_queues(raw: Any, defaulted: list[str]) -> list[Queue]:
    queues: list[Queue] = []
    seen: set[str] = set()
    for queue in _parse_list(Queue, raw, "queues", defaulted):
        if queue.id in seen:
            defaulted.append(f"queues[{queue.id}]")
            continue
        seen.add(queue.id)
        queues.append(queue)
    return queues


def _parse_cards(raw: Any, defaulted: list[str]) -> dict[str, Card]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        defaulted.append("cards")
        return {}

    cards: dict[str, Card] = {}
    for path, item in raw.items():
        try:
            card = parse_record(Card, item, f"cards[{path}]")
        except DataValidationError as e:
            defaulted.append(e.path)
            continue
        if card.note_path != path:
            # The mapping key is authoritative
            card.note_path = path
        cards[path] = card
    return cards


def parse_document(raw: Any) -> ParseResult:
    """
    Migrate and validate a raw primary document.

    Absent sections take their defaults silently; present but malformed
    sections (or records inside them) are defaulted and reported.
    """
    if raw is None:
        return ParseResult(StoreData())
    if not isinstance(raw, dict):
        logger.warning(f"Stored data is not a document ({type(raw).__name__}); using defaults")
        return ParseResult(StoreData(), defaulted=[DOCUMENT_PATH])

    doc, migrated_from = migrate(dict(raw))
    defaulted: list[str] = []

    data = StoreData(
        version=CURRENT_SCHEMA_VERSION,
        settings=_parse_settings(doc.get("settings"), defaulted),
        queues=_parse_queues(doc.get("queues"), defaulted),
        cards=_parse_cards(doc.get("cards"), defaulted),
        reviews=_parse_list(ReviewLogEntry, doc.get("reviews"), "reviews", defaulted),
        orphans=_parse_list(OrphanRecord, doc.get("orphans"), "orphans", defaulted),
    )

    if defaulted:
        shown = ", ".join(defaulted[:10])
        more = f" (+{len(defaulted) - 10} more)" if len(defaulted) > 10 else ""
        logger.warning(f"Defaulted {len(defaulted)} malformed field(s): {shown}{more}")

    return ParseResult(data, defaulted, migrated_from)
