"""Read-only chain oracle: transaction acceptance and public mapping reads.

The registry never writes to the chain. It asks two questions:

  * was this transaction found *and* accepted?
  * what raw value does `program/mapping[key]` hold?

Both fold every failure (404, non-accepted, timeout, transport error) into
the negative answer. `ChainVerifier` layers the per-operation soft/hard
confirmation policy on top.
"""

import asyncio
import enum
import logging
import re
from dataclasses import dataclass
from typing import Protocol

import httpx

from provenance.config import Settings, settings as default_settings
from provenance.core.exceptions import ChainUnavailableError, TransactionNotConfirmedError

logger = logging.getLogger(__name__)

TAG_UNIQUENESS = "tag_uniqueness"
STOLEN_COMMITMENTS = "stolen_commitments"
SALE_ACTIVE = "sale_active"
SALE_PAID = "sale_paid"
BRAND_MAPPINGS = ("registered_brands", "authorized_brands")


class ChainOracle(Protocol):
    async def is_transaction_accepted(self, tx_id: str) -> bool: ...

    async def read_mapping(self, program_id: str, mapping_name: str, key: str) -> str | None: ...


def mapping_flag(value: str | None) -> bool:
    """Mapping values come back as raw strings such as 'true' or '"true"'."""
    return value is not None and "true" in str(value)


@dataclass
class TransactionResult:
    found: bool
    accepted: bool
    tx_id: str
    block_height: int | None = None
    program_id: str | None = None
    function_name: str | None = None


class HttpChainOracle:
    """ChainOracle backed by the explorer REST API."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 8.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout_seconds,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def get_transaction(self, tx_id: str) -> TransactionResult:
        normalized = tx_id.lower()
        try:
            resp = await self._client.get(f"/transaction/{normalized}")
        except httpx.HTTPError as exc:
            logger.warning("Chain lookup for transaction %s failed: %s", normalized, exc)
            return TransactionResult(found=False, accepted=False, tx_id=tx_id)

        if resp.status_code == 404:
            return TransactionResult(found=False, accepted=False, tx_id=tx_id)
        if resp.status_code != 200:
            logger.warning("Chain API returned %d for transaction %s", resp.status_code, normalized)
            return TransactionResult(found=False, accepted=False, tx_id=tx_id)

        try:
            data = resp.json()
        except ValueError:
            logger.warning("Chain API returned non-JSON body for transaction %s", normalized)
            return TransactionResult(found=False, accepted=False, tx_id=tx_id)
        if not isinstance(data, dict):
            return TransactionResult(found=False, accepted=False, tx_id=tx_id)

        execution = data.get("execution")
        if not isinstance(execution, dict):
            execution = {}
        transitions = execution.get("transitions") or []
        first = transitions[0] if transitions and isinstance(transitions[0], dict) else {}
        index = data.get("index")
        if not isinstance(index, dict):
            index = {}

        status = data.get("status")
        if status is not None:
            accepted = status == "accepted"
        else:
            # explorers that omit status only return executed transactions
            accepted = data.get("type") == "execute" or bool(execution)

        return TransactionResult(
            found=True,
            accepted=accepted,
            tx_id=normalized,
            block_height=data.get("block_height") or index.get("block_height"),
            program_id=first.get("program"),
            function_name=first.get("function"),
        )

    async def is_transaction_accepted(self, tx_id: str) -> bool:
        result = await self.get_transaction(tx_id)
        return result.found and result.accepted

    async def read_mapping(self, program_id: str, mapping_name: str, key: str) -> str | None:
        try:
            resp = await self._client.get(f"/program/{program_id}/mapping/{mapping_name}/{key}")
        except httpx.HTTPError as exc:
            logger.warning("Mapping read %s/%s failed: %s", program_id, mapping_name, exc)
            return None
        if resp.status_code != 200:
            return None
        try:
            data = resp.json()
        except ValueError:
            return resp.text or None
        if data is None:
            return None
        if isinstance(data, bool):
            return "true" if data else "false"
        if isinstance(data, dict):
            value = data.get("value")
            return None if value is None else str(value)
        return str(data)


class Confirmation(enum.Enum):
    CONFIRMED = "confirmed"
    UNCONFIRMED = "unconfirmed"
    UNAVAILABLE = "unavailable"
    SKIPPED = "skipped"


class ChainVerifier:
    """Soft/hard confirmation policy over a ChainOracle.

    Every query is bounded by `oracle_timeout_seconds`; a timeout or
    transport failure is reported once and never retried.
    """

    def __init__(self, oracle: ChainOracle, cfg: Settings | None = None):
        self.oracle = oracle
        self.settings = cfg or default_settings
        self._tx_pattern = re.compile(self.settings.chain_tx_id_pattern, re.IGNORECASE)

    def is_chain_tx_id(self, tx_id: str) -> bool:
        """False for wallet-issued provisional ids that the chain cannot know yet."""
        return bool(self._tx_pattern.match(tx_id))

    async def check(self, tx_id: str) -> Confirmation:
        try:
            accepted = await asyncio.wait_for(
                self.oracle.is_transaction_accepted(tx_id),
                timeout=self.settings.oracle_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Chain oracle timed out confirming %s", tx_id)
            return Confirmation.UNAVAILABLE
        except Exception as exc:
            logger.warning("Chain oracle failed confirming %s: %s", tx_id, exc)
            return Confirmation.UNAVAILABLE
        return Confirmation.CONFIRMED if accepted else Confirmation.UNCONFIRMED

    async def confirm_soft(self, tx_id: str, operation: str) -> Confirmation:
        """Best-effort confirmation; never blocks the operation."""
        if not self.is_chain_tx_id(tx_id):
            logger.info("Provisional tx id %s for %s, recording without chain verification", tx_id, operation)
            return Confirmation.SKIPPED
        outcome = await self.check(tx_id)
        if outcome is not Confirmation.CONFIRMED:
            logger.warning("%s tx %s not yet confirmed (%s), recording anyway", operation, tx_id, outcome.value)
        return outcome

    async def confirm_hard(self, tx_id: str, operation: str) -> None:
        outcome = await self.check(tx_id)
        if outcome is Confirmation.UNAVAILABLE:
            raise ChainUnavailableError(operation)
        if outcome is not Confirmation.CONFIRMED:
            raise TransactionNotConfirmedError(tx_id)

    async def read_flag(self, mapping_name: str, key: str) -> bool:
        try:
            value = await asyncio.wait_for(
                self.oracle.read_mapping(self.settings.program_id, mapping_name, key),
                timeout=self.settings.oracle_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Chain oracle timed out reading %s", mapping_name)
            return False
        except Exception as exc:
            logger.warning("Chain oracle failed reading %s: %s", mapping_name, exc)
            return False
        return mapping_flag(value)

    async def read_flags(self, key: str, *mapping_names: str) -> list[bool]:
        return list(await asyncio.gather(*(self.read_flag(name, key) for name in mapping_names)))

    async def brand_authorized(self, brand_address: str) -> bool:
        for mapping_name in BRAND_MAPPINGS:
            if await self.read_flag(mapping_name, brand_address):
                return True
        return False
