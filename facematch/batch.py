"""
Batch descriptor regeneration

Re-extracts descriptors for the whole corpus (or only the entities still
missing one) in small concurrent batches with a fixed pause between them,
which keeps bulk runs under cloud rate limits.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from facematch.config import BATCH_DELAY_SECONDS, BATCH_SIZE, CLOUD_B_AUTHORIZATION_HELP_URL
from facematch.exceptions import ProviderAuthorizationError
from facematch.interfaces import Candidate, CandidateSource, EmbeddingStore
from facematch.registration import PhotoRegistrar
from facematch.registry import ProviderRegistry
from facematch.schemas import DescriptorStatus, ProviderConfig, RegenerationReport

logger = logging.getLogger(__name__)

SCOPES = ("all", "pending")


@dataclass
class _FailureTally:
    count: int = 0
    sample_entity_id: Optional[str] = None
    detail: Optional[str] = None


@dataclass
class _Failures:
    """Failures grouped by category, in first-seen order."""
    by_category: Dict[str, _FailureTally] = field(default_factory=dict)

    def add(self, category: str, entity_id: str, detail: Optional[str]) -> None:
        tally = self.by_category.setdefault(category, _FailureTally())
        tally.count += 1
        if tally.sample_entity_id is None:
            tally.sample_entity_id = entity_id
            tally.detail = detail

    def messages(self) -> List[str]:
        messages = []
        for category, tally in self.by_category.items():
            if category == ProviderAuthorizationError.category:
                messages.append(
                    f"Face recognition requires vendor approval for the active provider "
                    f"({tally.count} photo(s) affected). Apply at {CLOUD_B_AUTHORIZATION_HELP_URL} "
                    f"and run regeneration again once approved; photo URLs are stored and will "
                    f"be processed then."
                )
            else:
                message = f"{category}: {tally.count} photo(s) failed, e.g. {tally.sample_entity_id}"
                if tally.detail:
                    message += f" ({tally.detail})"
                messages.append(message)
        return messages


class BatchRegenerationJob:
    """
    Regenerates stored descriptors in rate-limited batches.

    Attributes:
        batch_size: Candidates processed concurrently per batch
        delay: Seconds to wait between batches (not after the last one)
        sleep: Awaitable sleep, injectable for tests
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        registrar: PhotoRegistrar,
        candidates: CandidateSource,
        store: EmbeddingStore,
        batch_size: int = BATCH_SIZE,
        delay: float = BATCH_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.registry = registry
        self.registrar = registrar
        self.candidates = candidates
        self.store = store
        self.batch_size = max(1, batch_size)
        self.delay = delay
        self.sleep = sleep

    async def _select(self, scope: str, provider: ProviderConfig) -> List[Candidate]:
        candidates = await self.candidates.list_candidates()
        if scope == "all":
            return candidates

        needing = {r.entity_id for r in await self.store.list_needing_descriptor(provider.provider_type)}
        # Photos registered without ever getting a record need one too
        known = await self.store.get_many([c.entity_id for c in candidates])
        return [c for c in candidates if c.entity_id in needing or c.entity_id not in known]

    async def _process(self, candidate: Candidate, failures: _Failures) -> bool:
        try:
            record, outcome = await self.registrar.register(candidate.entity_id, candidate.photo_url)
        except Exception as e:
            logger.error(f"Regeneration failed for {candidate.entity_id}: {e}", exc_info=True)
            failures.add("unexpected_error", candidate.entity_id, str(e))
            return False

        if record.status == DescriptorStatus.EXTRACTED:
            return True

        if outcome is not None and outcome.failure:
            failures.add(outcome.failure, candidate.entity_id, outcome.detail)
        else:
            failures.add("provider_error", candidate.entity_id, f"descriptor left {record.status.value}")
        return False

    async def run(self, scope: str = "all", stop_event: Optional[asyncio.Event] = None) -> RegenerationReport:
        """
        Regenerate descriptors.

        Args:
            scope: "all" for every candidate, "pending" for those still
                needing a descriptor under the active provider
            stop_event: When set, the run stops before the next batch

        Returns:
            RegenerationReport with success + failed == processed

        Raises:
            ConfigurationError: If no provider is active
            ValueError: If scope is unknown
        """
        if scope not in SCOPES:
            raise ValueError(f"Unknown scope '{scope}'. Supported: {', '.join(SCOPES)}")

        provider = await self.registry.require_active()
        selected = await self._select(scope, provider)

        report = RegenerationReport(total=len(selected))
        failures = _Failures()

        logger.info(
            f"Regenerating {len(selected)} descriptor(s) with {provider.provider_type.value} "
            f"in batches of {self.batch_size}"
        )

        for start in range(0, len(selected), self.batch_size):
            if stop_event is not None and stop_event.is_set():
                report.cancelled = True
                logger.info(f"Regeneration cancelled after {report.processed}/{report.total}")
                break

            if start:
                await self.sleep(self.delay)

            batch = selected[start:start + self.batch_size]
            results = await asyncio.gather(*(self._process(c, failures) for c in batch))

            succeeded = sum(1 for ok in results if ok)
            report.success += succeeded
            report.failed += len(results) - succeeded
            report.processed += len(results)

            logger.info(f"Batch {start // self.batch_size + 1}: {succeeded}/{len(results)} succeeded")

        report.errors = failures.messages()

        logger.info(
            f"Regeneration finished: {report.success} succeeded, {report.failed} failed, "
            f"{report.processed}/{report.total} processed"
        )
        return report
