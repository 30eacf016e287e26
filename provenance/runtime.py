"""Wires one store instance into every registry component.

    runtime = ProvenanceRuntime.open("./data/provenance.json")
    await runtime.artifacts.register_brand(address, "Acme")
    ...
    await runtime.close()
"""

from __future__ import annotations

import logging
import os

from provenance.config import Settings, settings as default_settings
from provenance.core.async_tasks import drain_background_tasks
from provenance.core.auth import WalletSessions
from provenance.services.artifact_service import ArtifactLedger
from provenance.services.chain_service import ChainOracle, ChainVerifier, HttpChainOracle
from provenance.services.event_service import EventLog
from provenance.services.listing_service import Marketplace
from provenance.services.sale_service import SaleCoordinator
from provenance.storage.snapshot_store import ProvenanceStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def configure_logging(cfg: Settings | None = None) -> None:
    cfg = cfg or default_settings
    logging.basicConfig(level=cfg.log_level.upper(), format=LOG_FORMAT)


class ProvenanceRuntime:
    def __init__(
        self,
        store: ProvenanceStore,
        oracle: ChainOracle,
        cfg: Settings,
        owns_oracle: bool = False,
    ):
        self.settings = cfg
        self.store = store
        self.oracle = oracle
        self._owns_oracle = owns_oracle

        self.events = EventLog(store, default_limit=cfg.event_log_default_limit)
        self.verifier = ChainVerifier(oracle, cfg)
        self.artifacts = ArtifactLedger(store, self.verifier, self.events)
        self.marketplace = Marketplace(store, self.verifier, self.events, cfg)
        self.sales = SaleCoordinator(store, self.verifier, self.events, cfg)
        self.sessions = WalletSessions(store, cfg)

    @classmethod
    def open(
        cls,
        path: str | os.PathLike | None = None,
        oracle: ChainOracle | None = None,
        cfg: Settings | None = None,
    ) -> ProvenanceRuntime:
        cfg = cfg or default_settings
        store = ProvenanceStore.open(path or cfg.store_path)
        owns_oracle = oracle is None
        if oracle is None:
            oracle = HttpChainOracle(cfg.chain_api_base, timeout_seconds=cfg.oracle_timeout_seconds)
        logger.info("Provenance runtime ready (program %s, env %s)", cfg.program_id, cfg.environment)
        return cls(store, oracle, cfg, owns_oracle=owns_oracle)

    async def close(self) -> None:
        await self.store.close()
        await drain_background_tasks()
        if self._owns_oracle and isinstance(self.oracle, HttpChainOracle):
            await self.oracle.aclose()
