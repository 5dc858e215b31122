"""
Service Factory
Wires the store, scheduler and services together from an AppConfig.
"""

import logging
from dataclasses import dataclass
from typing import Any

from atomic_review.application.card_service import CardService
from atomic_review.application.config import AppConfig
from atomic_review.application.note_watcher import NoteWatcher
from atomic_review.application.orphan_service import OrphanService
from atomic_review.application.queue_service import QueueService
from atomic_review.application.scheduler import Scheduler
from atomic_review.application.session_service import SessionService
from atomic_review.domain.constants import BACKUPS_FILE, DATA_FILE, SESSION_FILE
from atomic_review.domain.models import Settings
from atomic_review.domain.ports import Notifier, StorageBackend, Workspace
from atomic_review.infrastructure.notifiers import LogNotifier
from atomic_review.infrastructure.persistence import DataStore, JsonFileBackend
from atomic_review.infrastructure.vault.resolver import VaultResolver
from atomic_review.infrastructure.vault.workspace import TerminalWorkspace

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: AppConfig
    store: DataStore
    scheduler: Scheduler
    resolver: VaultResolver
    cards: CardService
    queues: QueueService
    sessions: SessionService
    watcher: NoteWatcher
    orphans: OrphanService

    def update_settings(self, **changes: Any) -> Settings:
        """Apply settings changes and rebuild the scheduler from the new parameters."""
        settings = self.store.update_settings(**changes)
        self.scheduler.update_params(settings.fsrs_params)
        return settings


def build_store(
    config: AppConfig,
    notifier: Notifier | None = None,
    backend: StorageBackend | None = None,
    backup_backend: StorageBackend | None = None,
) -> DataStore:
    data_dir = config.data_dir
    if data_dir is None:
        raise ValueError("data_dir is not set; build the config with resolve_config()")
    return DataStore(
        backend or JsonFileBackend(data_dir / DATA_FILE),
        backup_backend or JsonFileBackend(data_dir / BACKUPS_FILE),
        notifier,
        save_debounce=config.save_debounce,
        min_save_interval=config.min_save_interval,
        save_max_attempts=config.save_max_attempts,
        save_retry_base_delay=config.save_retry_base_delay,
        max_backups=config.max_backups,
        backup_interval=config.backup_interval,
        review_log_cap=config.review_log_cap,
    )


async def build_services(
    config: AppConfig,
    notifier: Notifier | None = None,
    workspace: Workspace | None = None,
    store: DataStore | None = None,
    session_backend: StorageBackend | None = None,
) -> Services:
    """
    Load the store and construct every service.
    A pre-built store is used as-is and is expected to be loaded already.
    """
    notifier = notifier or LogNotifier()
    vault_root = config.vault_root
    if vault_root is None:
        raise ValueError("vault_root is not set; build the config with resolve_config()")

    if store is None:
        store = build_store(config, notifier)
        await store.load()

    scheduler = Scheduler(store.settings.fsrs_params)
    resolver = VaultResolver(vault_root, settings=lambda: store.settings)
    cards = CardService(store, scheduler)
    queues = QueueService(store, cards, resolver, stats_cache_ttl=config.stats_cache_ttl)
    if session_backend is None and config.data_dir is not None:
        session_backend = JsonFileBackend(config.data_dir / SESSION_FILE)
    sessions = SessionService(
        store,
        cards,
        queues,
        workspace or TerminalWorkspace(vault_root),
        notifier,
        session_backend,
    )

    logger.debug(f"Services ready for vault {vault_root}")
    return Services(
        config=config,
        store=store,
        scheduler=scheduler,
        resolver=resolver,
        cards=cards,
        queues=queues,
        sessions=sessions,
        watcher=NoteWatcher(store, cards, sessions, notifier),
        orphans=OrphanService(store),
    )
