"""Lifecycle of the reference index: start, restart on settings change, search."""

from __future__ import annotations

from loguru import logger

from reference_index.config import ConfigLoadResult, ConfigManager, ConfigSnapshot, is_configured
from reference_index.index import DIRECTORY_PREFIX_FILTER
from reference_index.models import SearchResult
from reference_index.service_factory import IndexServices, ServiceFactory


class ReferenceIndexManager:
    """Owns the running index services and rebuilds them when settings change.

    The decision to rebuild comes from ``ConfigManager.load_configuration``;
    there is no lock between that decision and the rebuild.
    """

    def __init__(self, config_manager: ConfigManager, factory: ServiceFactory):
        self.config_manager = config_manager
        self.factory = factory
        self.services: IndexServices | None = None

    @property
    def is_running(self) -> bool:
        return self.services is not None

    @staticmethod
    def _is_ready(config: ConfigSnapshot) -> bool:
        return config.enabled and is_configured(config)

    async def start(self) -> bool:
        """Start from the current snapshot.

        Returns:
            True if services are running afterwards
        """
        config = self.config_manager.snapshot
        if not self._is_ready(config):
            logger.info("Reference index is disabled or not configured; not starting")
            return False
        await self._restart(config)
        return True

    async def handle_settings_change(self) -> ConfigLoadResult:
        """Reload settings and restart, stop or keep the services accordingly."""
        result = self.config_manager.load_configuration()
        current = result.current

        if not self._is_ready(current):
            if self.services is not None:
                logger.info("Reference index disabled or unconfigured; stopping services")
                await self.stop()
        elif result.requires_restart or self.services is None:
            await self._restart(current)

        return result

    async def _restart(self, config: ConfigSnapshot) -> None:
        await self.stop()

        services = self.factory.create_services(config)
        recreated = await services.vector_store.initialize()
        if recreated:
            # Cached hashes describe points that no longer exist
            services.scanner.cache.clear()

        await services.scanner.scan_directory(self.factory.scan_root(config))
        services.file_watcher.start()
        self.services = services
        logger.info(f"Reference index running for {self.factory.scan_root(config)}")

    async def stop(self) -> None:
        if self.services is None:
            return
        await self.services.file_watcher.stop()
        self.services = None

    async def search(
        self, query: str, directory_prefix: str | None = None
    ) -> list[SearchResult]:
        """Embed ``query`` and return matching snippets.

        Args:
            query: Natural-language or code query
            directory_prefix: Restrict hits to files under this relative directory

        Returns:
            Hits above the effective minimum score, best first; empty when not running
        """
        if self.services is None:
            return []

        config = self.config_manager.snapshot
        vector = await self.services.embedder.embed_single(query)
        filters = {DIRECTORY_PREFIX_FILTER: directory_prefix} if directory_prefix else None
        return await self.services.vector_store.search(
            vector,
            filters=filters,
            limit=config.effective_search_max_results,
            min_score=config.effective_search_min_score,
        )
