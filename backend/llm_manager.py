"""LLM provider pool — primary + fallback providers with cooldown-based failover.

Every text-generation call in the Catalog Assistant goes through
``LLMManager.generate_text``. The manager:

  - keeps an ordered list of providers (primary first, then fallbacks),
  - tracks a per-provider cooldown deadline (the cooldown table),
  - runs each attempt in a worker thread bounded by a timeout,
  - classifies failures and decides between backing off, retrying the same
    provider once, or switching to the provider with the shortest cooldown,
  - raises ``ProvidersExhaustedError`` listing every failure once the global
    attempt budget is spent. A request is never silently dropped.

The cooldown table and the current-provider pointer are process-wide and
shared by concurrent plan executions, so they are only touched under
``self._lock``. The lock is never held across I/O; a concurrent request may
change the table between our read and our sleep, which at worst yields a
slightly suboptimal provider choice.
"""

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from typing import Awaitable, Callable, Iterable, Optional

from api_keys import api_keys_manager
from config_loader import ProviderPoolConfig, get_config
from llm_providers import (
    ErrorCategory,
    GenerationOptions,
    LLMProvider,
    ProviderError,
    build_provider,
    parse_json_response,
)

logger = logging.getLogger(__name__)

# Categories that set an exponential cooldown and move on to another provider
BACKOFF_AND_SWITCH = {ErrorCategory.QUOTA_EXCEEDED, ErrorCategory.RATE_LIMITED}
# Categories that earn one retry on the same provider before switching
RETRY_SAME_PROVIDER = {ErrorCategory.TIMEOUT, ErrorCategory.TEMPORARY_SERVER_ERROR}


class LLMManagerError(Exception):
    pass


class NoProvidersConfiguredError(LLMManagerError):
    pass


class GenerationCancelled(LLMManagerError):
    pass


@dataclass
class ProviderFailure:
    name: str
    error: str
    attempt: int
    category: ErrorCategory
    timestamp: float = field(default_factory=time.time)


class ProvidersExhaustedError(LLMManagerError):
    """All attempts failed. ``failures`` holds one entry per failed attempt."""

    def __init__(self, message: str, failures: list[ProviderFailure]):
        super().__init__(message)
        self.failures = failures

    @property
    def providers_tried(self) -> list[str]:
        return list(dict.fromkeys(f.name for f in self.failures))


@dataclass
class BackoffStatus:
    is_retrying: bool
    provider: str
    wait_s: float
    total_wait_s: float
    attempt: int
    max_attempts: int
    timestamp: float
    quota_exceeded: bool = False
    all_providers_in_cooldown: bool = False
    business_context: Optional[dict] = None


class LLMManager:
    """Provider pool with exponential backoff and automatic fallback."""

    def __init__(
        self,
        providers: list[LLMProvider],
        settings: Optional[ProviderPoolConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or get_config().provider_pool
        self.providers: list[LLMProvider] = [p for p in providers if p.is_configured()]
        self.primary_provider: Optional[LLMProvider] = self.providers[0] if self.providers else None
        self._current: Optional[LLMProvider] = self.primary_provider
        self._cooldowns: dict[str, float] = {}
        self._backoff_status: Optional[BackoffStatus] = None
        self._lock = threading.Lock()
        self._clock = clock
        self._sleep_fn = sleep
        self._executor = ThreadPoolExecutor(max_workers=self.settings.worker_threads)

        logger.info(
            f"[LLMManager] Providers (primary first): "
            f"{', '.join(p.name for p in self.providers) or 'none'}"
        )

    @classmethod
    def from_environment(cls, settings: Optional[ProviderPoolConfig] = None, **kwargs) -> "LLMManager":
        """Build the pool from LLM_PRIMARY_PROVIDER / LLM_FALLBACK_PROVIDERS."""
        primary_name = api_keys_manager.get_primary_provider()
        names = [primary_name] + [
            n for n in api_keys_manager.get_fallback_providers() if n != primary_name
        ]
        providers = []
        for name in names:
            provider = build_provider(name)
            if provider is None:
                continue
            if not provider.is_configured():
                logger.warning(f"[LLMManager] Provider {name} listed but not configured")
                continue
            providers.append(provider)
        return cls(providers, settings=settings, **kwargs)

    # ------------------------------------------------------------------
    # Cooldown table
    # ------------------------------------------------------------------

    def compute_backoff(self, attempt_index: int) -> float:
        """Cooldown in seconds for the given 0-based failure index."""
        s = self.settings
        return min(s.max_backoff_s, s.base_backoff_s * (s.backoff_multiplier ** max(0, attempt_index)))

    def set_provider_cooldown(self, provider_name: str, attempt_index: int = 0) -> float:
        backoff = self.compute_backoff(attempt_index)
        with self._lock:
            self._cooldowns[provider_name] = self._clock() + backoff
        logger.info(
            f"[LLMManager] 🕒 Provider {provider_name} in cooldown for {backoff:.1f}s "
            f"(attempt {attempt_index + 1})"
        )
        return backoff

    def clear_provider_cooldown(self, provider_name: str) -> None:
        with self._lock:
            if self._cooldowns.pop(provider_name, None) is not None:
                logger.info(f"[LLMManager] ✅ Clearing cooldown for {provider_name}")

    def get_remaining_cooldown(self, provider_name: str) -> float:
        with self._lock:
            until = self._cooldowns.get(provider_name)
        if until is None:
            return 0.0
        # Stale entries simply read as elapsed; they are not deleted here
        return max(0.0, until - self._clock())

    def is_provider_in_cooldown(self, provider_name: str) -> bool:
        return self.get_remaining_cooldown(provider_name) > 0

    # ------------------------------------------------------------------
    # Provider selection
    # ------------------------------------------------------------------

    @property
    def current_provider(self) -> Optional[LLMProvider]:
        with self._lock:
            return self._current

    def _set_current(self, provider: LLMProvider) -> None:
        with self._lock:
            previous = self._current
            self._current = provider
        if previous is not provider:
            logger.info(
                f"[LLMManager] 🔄 Switching from {previous.name if previous else 'none'} to {provider.name}"
            )

    def reset_to_primary(self) -> None:
        if self.primary_provider is not None:
            logger.info(f"[LLMManager] Resetting to primary provider: {self.primary_provider.name}")
            with self._lock:
                self._current = self.primary_provider

    def next_available_provider(
        self,
        exclude: Optional[LLMProvider] = None,
        skip: Iterable[str] = (),
    ) -> Optional[LLMProvider]:
        """First provider (in priority order) not cooling down, else the one with the shortest cooldown.

        Providers named in ``skip`` are never returned.
        """
        skip = set(skip)
        candidates = [p for p in self.providers if p is not exclude and p.name not in skip]
        if not candidates:
            return None
        for provider in candidates:
            if not self.is_provider_in_cooldown(provider.name):
                return provider
        return min(candidates, key=lambda p: self.get_remaining_cooldown(p.name))

    def _all_in_cooldown(self) -> bool:
        return all(self.is_provider_in_cooldown(p.name) for p in self.providers)

    # ------------------------------------------------------------------
    # Backoff status for the UI
    # ------------------------------------------------------------------

    def _publish_status(self, **kwargs) -> None:
        status = BackoffStatus(timestamp=self._clock(), **kwargs)
        logger.info(
            f"[LLMManager] 📡 Backoff status: provider={status.provider} "
            f"wait={status.wait_s:.1f}s total={status.total_wait_s:.1f}s "
            f"attempt={status.attempt}/{status.max_attempts} "
            f"quota={status.quota_exceeded} all_cooling={status.all_providers_in_cooldown}"
        )
        with self._lock:
            self._backoff_status = status

    def get_backoff_status(self) -> Optional[dict]:
        """Current backoff status, or None once it is older than the TTL."""
        with self._lock:
            status = self._backoff_status
            if status is None:
                return None
            age = self._clock() - status.timestamp
            if age > self.settings.backoff_status_ttl_s:
                self._backoff_status = None
                return None

        data = asdict(status)
        data.pop("timestamp")
        data.pop("wait_s")
        data["remaining_wait_s"] = max(0.0, status.wait_s - age)
        return data

    def clear_backoff_status(self) -> None:
        with self._lock:
            self._backoff_status = None

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def _sleep(self, seconds: float, cancel_event: Optional[asyncio.Event]) -> None:
        if seconds <= 0:
            return
        if cancel_event is None:
            await self._sleep_fn(seconds)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise GenerationCancelled("Generation cancelled while waiting for provider cooldown")

    async def _attempt(self, provider: LLMProvider, prompt: str, options: GenerationOptions, timeout_s: float) -> str:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(self._executor, provider.generate_text, prompt, options),
                timeout=timeout_s,
            )
        except asyncio.TimeoutError:
            raise ProviderError(
                f"Request timeout after {timeout_s:.0f}s",
                provider=provider.name,
                category=ErrorCategory.TIMEOUT,
            )

    def _schedule_primary_reset(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        loop.call_later(self.settings.primary_reset_delay_s, self.reset_to_primary)

    async def generate_text(
        self,
        prompt: str,
        options: Optional[GenerationOptions] = None,
        max_global_attempts: Optional[int] = None,
        business_context: Optional[dict] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> str:
        """Generate text with exponential backoff and automatic fallback.

        Args:
            prompt: The input prompt.
            options: Generation options (temperature, max_tokens, top_p).
            max_global_attempts: Attempt budget across all providers combined.
            business_context: Marks the request as business-context sensitive
                (longer timeout); echoed in backoff status and errors.
            cancel_event: Set to abort cooldown waits and further attempts.

        Raises:
            NoProvidersConfiguredError: no provider has a key and model.
            ProvidersExhaustedError: every attempt failed.
            GenerationCancelled: ``cancel_event`` was set.
        """
        if not self.providers:
            raise NoProvidersConfiguredError(
                "No LLM providers configured. Please set API keys for at least one provider."
            )

        options = options or GenerationOptions()
        max_attempts = max_global_attempts or self.settings.max_global_attempts
        timeout_s = self.settings.business_timeout_s if business_context else self.settings.default_timeout_s
        company = (business_context or {}).get("company")
        if business_context:
            logger.info(f"[LLMManager] 🏢 Business context workflow detected for: {company or 'unknown company'}")

        start = self._clock()
        attempts = 0
        total_wait = 0.0
        failures: list[ProviderFailure] = []
        failure_counts: dict[str, int] = {}
        spent: set[str] = set()
        # Set after a timeout/5xx so the next pass waits for this provider instead of switching
        retry_same = False

        provider = self.current_provider or self.primary_provider

        while attempts < max_attempts:
            if cancel_event is not None and cancel_event.is_set():
                raise GenerationCancelled("Generation cancelled")

            if provider.name in spent:
                next_provider = self.next_available_provider(skip=spent)
                if next_provider is None:
                    logger.warning(
                        f"[LLMManager] Every provider reached {self.settings.max_provider_attempts} failed attempts"
                    )
                    break
                provider = next_provider
                self._set_current(provider)
                retry_same = False

            remaining = self.get_remaining_cooldown(provider.name)
            if remaining > 0:
                best = None if retry_same else self.next_available_provider(skip=spent)
                if best is not None and best is not provider and self.get_remaining_cooldown(best.name) < remaining:
                    # Prefer immediate availability over waiting
                    provider = best
                    self._set_current(provider)
                    continue

                all_cooling = self._all_in_cooldown()
                total_wait += remaining
                self._publish_status(
                    is_retrying=True,
                    provider="all providers" if all_cooling and len(self.providers) > 1 else provider.name,
                    wait_s=remaining,
                    total_wait_s=total_wait,
                    attempt=attempts + 1,
                    max_attempts=max_attempts,
                    all_providers_in_cooldown=all_cooling,
                    business_context=business_context,
                )
                logger.info(f"[LLMManager] ⏰ Waiting {remaining:.1f}s for {provider.name} cooldown")
                await self._sleep(remaining, cancel_event)

            attempts += 1
            retry_same = False
            logger.info(f"[LLMManager] 🚀 Using provider: {provider.name} (attempt {attempts}/{max_attempts})")
            try:
                text = await self._attempt(provider, prompt, options, timeout_s)
            except Exception as e:
                category = provider.classify_error(e)
                message = str(e) or type(e).__name__
                failures.append(ProviderFailure(provider.name, message, attempts, category))
                attempt_index = failure_counts.get(provider.name, 0)
                failure_counts[provider.name] = attempt_index + 1
                if failure_counts[provider.name] >= self.settings.max_provider_attempts:
                    spent.add(provider.name)
                logger.error(
                    f"[LLMManager] ❌ Provider {provider.name} failed "
                    f"(attempt {attempts}, {category.value}): {message}"
                )

                if category in BACKOFF_AND_SWITCH:
                    backoff = self.set_provider_cooldown(provider.name, attempt_index)
                    self._publish_status(
                        is_retrying=True,
                        provider=provider.name,
                        wait_s=backoff,
                        total_wait_s=total_wait + backoff,
                        attempt=attempts,
                        max_attempts=max_attempts,
                        quota_exceeded=True,
                        business_context=business_context,
                    )
                    switch = True
                elif category in RETRY_SAME_PROVIDER:
                    self.set_provider_cooldown(provider.name, attempt_index // 2)
                    switch = failure_counts[provider.name] >= 2
                    retry_same = not switch
                else:
                    if category == ErrorCategory.ACCESS_DENIED:
                        self.set_provider_cooldown(provider.name, attempt_index // 2)
                    switch = True

                if switch:
                    next_provider = self.next_available_provider(exclude=provider, skip=spent)
                    if next_provider is not None:
                        provider = next_provider
                        self._set_current(provider)
                    elif category not in BACKOFF_AND_SWITCH | RETRY_SAME_PROVIDER:
                        # Nothing else to try and retrying this provider would not help
                        break
                continue

            self.clear_provider_cooldown(provider.name)
            if provider is not self.primary_provider:
                self._schedule_primary_reset()
            if business_context:
                logger.info(f"[LLMManager] ✅ Business context workflow completed with {provider.name}")
            logger.info(
                f"[LLMManager] ✅ Request completed in {self._clock() - start:.2f}s "
                f"({attempts} attempts, {total_wait:.1f}s wait time)"
            )
            return text

        error_summary = "; ".join(f"{f.name}: {f.error} (attempt {f.attempt})" for f in failures)
        context_message = f" (Business context for {company})" if company else ""
        total_time = self._clock() - start
        logger.error(f"[LLMManager] 💥 All providers failed after {total_time:.1f}s and {attempts} attempts")
        raise ProvidersExhaustedError(
            f"All providers exhausted after {attempts} attempts{context_message}. "
            f"Total time: {total_time:.0f}s. Errors: {error_summary}",
            failures,
        )

    async def generate_json(self, prompt: str, options: Optional[GenerationOptions] = None, **kwargs):
        """Generate and parse a JSON response. Returns None when the text is not JSON."""
        text = await self.generate_text(prompt, options, **kwargs)
        return parse_json_response(text)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def has_configured_providers(self) -> bool:
        return bool(self.providers)

    def get_providers_info(self) -> list[dict]:
        current = self.current_provider
        info = []
        for provider in self.providers:
            entry = provider.get_info()
            entry["is_primary"] = provider is self.primary_provider
            entry["is_current"] = provider is current
            entry["cooldown_remaining_s"] = round(self.get_remaining_cooldown(provider.name), 2)
            info.append(entry)
        return info

    def close(self) -> None:
        self._executor.shutdown(wait=False)
