"""Fan a part search out to every enabled distributor and merge the answers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Iterable, Mapping

from .adapter import ProviderAdapter
from .config import SEARCH_BUDGET_SECONDS
from .errors import AggregateError, AggregateErrorKind, ErrorKind, ProviderError
from .models import AggregatedResult, PartRecord, PartSearchQuery, ProviderFailure
from .ranking import group_records

logger = logging.getLogger(__name__)

# Failures that say nothing about the caller's setup: waiting may fix them,
# or the vendor answered but with nothing usable
_NON_SYSTEMIC = {ErrorKind.RATE_LIMITED, ErrorKind.TIMEOUT, ErrorKind.MALFORMED}


class SearchAggregator:
    """Concurrent fan-out across provider adapters under one time budget."""

    def __init__(self, adapters: Mapping[str, ProviderAdapter], budget: float = SEARCH_BUDGET_SECONDS):
        self._adapters = dict(adapters)
        self._budget = budget

    @property
    def provider_ids(self) -> list[str]:
        return list(self._adapters)

    def _select(self, enabled_providers: Iterable[str] | None) -> tuple[list[str], list[ProviderFailure]]:
        if enabled_providers is None:
            return list(self._adapters), []
        selected: list[str] = []
        failures: list[ProviderFailure] = []
        for name in enabled_providers:
            provider_id = name.strip().lower()
            if provider_id in selected or any(f.provider_id == provider_id for f in failures):
                continue
            if provider_id in self._adapters:
                selected.append(provider_id)
            else:
                failures.append(ProviderFailure(provider_id, ErrorKind.UNAVAILABLE, "Provider is not configured"))
        return selected, failures

    async def _fan_out(
        self,
        provider_ids: list[str],
        call: Callable[[ProviderAdapter, float], Awaitable[Any]],
    ) -> tuple[dict[str, Any], list[ProviderFailure]]:
        """Run ``call`` once per provider concurrently within the budget.

        Returns successful results keyed by provider and a failure entry for
        every provider that raised or ran out of time, both in provider order.
        """
        if not provider_ids:
            return {}, []

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._budget
        tasks = {
            provider_id: asyncio.ensure_future(call(self._adapters[provider_id], deadline))
            for provider_id in provider_ids
        }

        try:
            done, pending = await asyncio.wait(tasks.values(), timeout=self._budget)
        except asyncio.CancelledError:
            for task in tasks.values():
                task.cancel()
            raise
        for task in pending:
            task.cancel()
        if pending:
            # Let cancelled tasks unwind; their results are discarded
            await asyncio.gather(*pending, return_exceptions=True)

        results: dict[str, Any] = {}
        failures: list[ProviderFailure] = []
        for provider_id, task in tasks.items():
            if task not in done or task.cancelled():
                logger.warning(f"{provider_id} did not answer within {self._budget:.1f}s")
                failures.append(ProviderFailure(provider_id, ErrorKind.TIMEOUT, "No response within the search budget"))
                continue
            error = task.exception()
            if error is None:
                results[provider_id] = task.result()
            elif isinstance(error, ProviderError):
                log = logger.error if error.kind is ErrorKind.MALFORMED else logger.warning
                log(f"{provider_id} failed ({error.kind.value}): {error}")
                failures.append(ProviderFailure(provider_id, error.kind, str(error)))
            else:
                logger.error(f"{provider_id} search failed: {type(error).__name__}: {error}")
                failures.append(ProviderFailure(provider_id, ErrorKind.UNAVAILABLE, "Unexpected provider failure"))
        return results, failures

    @staticmethod
    def _check_total_failure(selected: list[str], results: dict[str, Any], failures: list[ProviderFailure]) -> None:
        if not selected and not failures:
            return
        if results:
            return
        if any(f.kind in _NON_SYSTEMIC for f in failures):
            return
        raise AggregateError(AggregateErrorKind.ALL_PROVIDERS_FAILED, failures)

    async def search(self, query: PartSearchQuery, enabled_providers: Iterable[str] | None = None) -> AggregatedResult:
        """Search every enabled provider and return grouped, ordered listings.

        Args:
            query: Keyword or part-number query, carrying the requesting user
            enabled_providers: Provider ids to use; None means all configured

        Raises:
            AggregateError: every provider failed and none of the failures was
                a rate limit, timeout or malformed response
        """
        selected, failures = self._select(enabled_providers)

        async def call(adapter: ProviderAdapter, deadline: float) -> list[PartRecord]:
            return await adapter.search(query, deadline=deadline)

        results, call_failures = await self._fan_out(selected, call)
        failures.extend(call_failures)
        self._check_total_failure(selected, results, failures)

        # Provider order, not completion order, keeps the result deterministic
        records = [record for provider_id in selected for record in results.get(provider_id, [])]
        groups = group_records(records, query.text)
        logger.info(
            f"Search {query.text!r} for user {query.user_id}: {len(records)} listings in {len(groups)} groups, "
            f"{len(failures)} provider failures"
        )
        return AggregatedResult(query=query, groups=tuple(groups), errors=tuple(failures))

    async def datasheets(
        self,
        part_number: str,
        user_id: str,
        enabled_providers: Iterable[str] | None = None,
    ) -> dict[str, Any]:
        """Collect datasheet URLs for a part number from every enabled provider."""
        selected, failures = self._select(enabled_providers)

        async def call(adapter: ProviderAdapter, deadline: float) -> list[str]:
            return await adapter.get_datasheets(part_number, user_id, deadline=deadline)

        results, call_failures = await self._fan_out(selected, call)
        failures.extend(call_failures)
        self._check_total_failure(selected, results, failures)
        return {
            "part_number": part_number,
            "datasheets": {provider_id: results[provider_id] for provider_id in selected if provider_id in results},
            "errors": [f.to_dict() for f in failures],
        }

    async def close(self) -> None:
        for adapter in self._adapters.values():
            await adapter.close()
