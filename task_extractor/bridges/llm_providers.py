"""
LLM provider access with retries, local fallback and service detection
"""
import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Set

import httpx
import ollama

from config.settings import LLMConfig, LOCAL_PROVIDERS
from ..core.errors import LLMProviderError, ProbeFailure
from ..core.event_log import DebugEventLog
from ..core.interfaces import ILLMProvider, INotifier, LLMService
from .service_cache import DEFAULT_TTL_SECONDS, ServiceAvailabilityCache

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
OPENAI_MODELS_URL = "https://api.openai.com/v1/models"
ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"

# Anthropic has no public model listing endpoint
ANTHROPIC_KNOWN_MODELS = [
    "claude-opus-4-1-20250805",
    "claude-opus-4-20250514",
    "claude-sonnet-4-20250514",
    "claude-3-7-sonnet-20250219",
    "claude-3-5-sonnet-20241022",
    "claude-3-5-sonnet-20240620",
    "claude-3-5-haiku-20241022",
    "claude-3-opus-20240229",
    "claude-3-sonnet-20240229",
    "claude-3-haiku-20240307",
]

DEFAULT_MODELS: Dict[str, List[str]] = {
    "openai": ["gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-3.5-turbo"],
    "anthropic": [
        "claude-opus-4-1-20250805",
        "claude-sonnet-4-20250514",
        "claude-3-7-sonnet-20250219",
        "claude-3-5-sonnet-20241022",
        "claude-3-5-haiku-20241022",
        "claude-3-opus-20240229",
    ],
    "ollama": ["llama3.2", "mistral", "codellama"],
    "lmstudio": ["local-model"],
}

# Per-attempt failures that are retried; anything else is a bug and propagates
_CALL_ERRORS = (
    asyncio.TimeoutError,
    LLMProviderError,
    httpx.HTTPError,
    ollama.ResponseError,
    ConnectionError,
    ValueError,
)

_STATUS_HINTS = {
    "openai": {
        401: "Check that your OpenAI API key is valid and properly configured.",
        400: "Request format may be invalid - check model name and request parameters.",
        429: "Rate limit exceeded - please try again later.",
        403: "Access denied - check API key permissions.",
    },
    "anthropic": {
        404: f"Check that anthropic_url uses the correct endpoint: {ANTHROPIC_MESSAGES_URL}",
        401: "Check that your Anthropic API key is valid and has proper permissions.",
        403: "Check that your Anthropic API key is valid and has proper permissions.",
        400: "Request format may be invalid - check model name and request parameters.",
    },
}


def mask_key(api_key: str) -> str:
    return f"...{api_key[-4:]}" if api_key else "none"


def _ollama_model_name(entry: Any) -> str:
    if isinstance(entry, dict):
        return entry.get("model") or entry.get("name") or ""
    return getattr(entry, "model", None) or getattr(entry, "name", None) or ""


class LLMProviderManager(ILLMProvider):
    """Provider-agnostic LLM access.

    Cloud providers (OpenAI, Anthropic) are called over HTTP with ``httpx``.
    Local providers are looked up in the ServiceAvailabilityCache first;
    Ollama is spoken to through the ``ollama`` client and LM Studio through
    its OpenAI-compatible HTTP API.
    """

    def __init__(
        self,
        settings: LLMConfig,
        cache_ttl: float = DEFAULT_TTL_SECONDS,
        notifier: Optional[INotifier] = None,
        event_log: Optional[DebugEventLog] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        ollama_client_factory: Optional[Callable[..., Any]] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self.notifier = notifier
        self.event_log = event_log or DebugEventLog(enabled=False)
        self.service_cache = ServiceAvailabilityCache(self._probe_service, ttl=cache_ttl, clock=clock)
        self._http = http_client
        self._owns_http = http_client is None
        self._ollama_client_factory = ollama_client_factory or (
            lambda host, timeout: ollama.AsyncClient(host=host, timeout=timeout)
        )
        self._sleep = sleep
        self._cloud_model_cache: Dict[str, List[str]] = {}
        self._api_key_missing_notified: Set[str] = set()

    # ------------------------------------------------------------------
    # HTTP plumbing

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.settings.timeout)
        return self._http

    async def aclose(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    def _ollama_client(self) -> Any:
        return self._ollama_client_factory(host=self.settings.ollama_url, timeout=self.settings.timeout)

    # ------------------------------------------------------------------
    # Service detection

    async def _probe_service(self, name: str) -> LLMService:
        """Probe one local service; raises ProbeFailure when unreachable"""
        if name == "ollama":
            url = self.settings.ollama_url
            try:
                listing = await self._ollama_client().list()
            except Exception as e:
                raise ProbeFailure("ollama", url, str(e)) from e
            raw_models = listing["models"] if "models" in listing else []
            models = [n for n in (_ollama_model_name(m) for m in raw_models or []) if n]
            return LLMService(name="ollama", url=url, available=True, models=models)

        if name == "lmstudio":
            url = self.settings.lmstudio_url
            try:
                resp = await self.http.get(f"{url}/v1/models")
            except httpx.HTTPError as e:
                raise ProbeFailure("lmstudio", url, str(e)) from e
            if resp.status_code != 200:
                raise ProbeFailure("lmstudio", url, f"HTTP {resp.status_code}")
            data = resp.json().get("data") or []
            models = [m["id"] for m in data if isinstance(m, dict) and m.get("id")]
            return LLMService(name="lmstudio", url=url, available=True, models=models)

        raise ProbeFailure(name, reason="unknown provider")

    async def get_service(self, name: str) -> LLMService:
        correlation_id = self.event_log.start_operation(
            "service-detection", f"Detecting service: {name}", {"provider": name}
        )
        service = await self.service_cache.get_service(name)
        self.event_log.log(
            "info" if service.available else "warn",
            "service-detection",
            f"{name} available={service.available}",
            {"url": service.url, "models": service.models},
            correlation_id,
        )
        return service

    async def detect_services(self) -> Dict[str, LLMService]:
        services: Dict[str, LLMService] = {}
        for name in LOCAL_PROVIDERS:
            services[name] = await self.get_service(name)
        return services

    def available_services(self) -> List[LLMService]:
        return self.service_cache.available_services()

    def update_settings(self, **changes: Any) -> None:
        """Apply provider setting changes; a changed local URL drops that cache entry"""
        for key, value in changes.items():
            if not hasattr(self.settings, key):
                raise AttributeError(f"Unknown LLM setting: {key}")
            previous = getattr(self.settings, key)
            setattr(self.settings, key, value)
            if previous == value:
                continue
            if key == "ollama_url":
                self.service_cache.invalidate("ollama")
            elif key == "lmstudio_url":
                self.service_cache.invalidate("lmstudio")
            elif key == "api_key":
                self._cloud_model_cache.clear()

    # ------------------------------------------------------------------
    # Calls

    def validate_provider_config(self, provider: Optional[str] = None) -> List[str]:
        """Return configuration errors for a provider (empty when usable)"""
        provider = provider or self.settings.provider
        s = self.settings
        errors: List[str] = []
        if provider == "openai":
            if not s.api_key.strip():
                errors.append("OpenAI API key is missing")
            elif not s.api_key.startswith("sk-"):
                errors.append('OpenAI API key should start with "sk-"')
            if not s.model.strip():
                errors.append("OpenAI model is not specified")
        elif provider == "anthropic":
            if not s.api_key.strip():
                errors.append("Anthropic API key is missing")
            if "api.anthropic.com/v1/messages" not in (s.anthropic_url or ANTHROPIC_MESSAGES_URL):
                errors.append(f"Anthropic URL must point to {ANTHROPIC_MESSAGES_URL}")
            if not s.model.strip():
                errors.append("Anthropic model is not specified")
        elif provider == "ollama":
            if not s.ollama_url.strip():
                errors.append("Ollama URL is missing")
        elif provider == "lmstudio":
            if not s.lmstudio_url.strip():
                errors.append("LM Studio URL is missing")
        else:
            errors.append(f"Unsupported provider: {provider}")
        return errors

    def _api_key_missing(self, provider: str) -> bool:
        if provider not in ("openai", "anthropic"):
            return False
        if self.settings.api_key.strip():
            self._api_key_missing_notified.discard(provider)
            return False
        if provider not in self._api_key_missing_notified:
            self._api_key_missing_notified.add(provider)
            message = f"Task Extractor: {provider.upper()} API key not configured in plugin settings"
            logger.warning(f"event=api_key_missing provider={provider}")
            if self.notifier:
                self.notifier.notify(message)
        return True

    async def call_llm(self, system_prompt: str, user_prompt: str) -> Optional[str]:
        """Send the prompt pair to the configured provider.

        Returns the raw response text, or None when no provider produced one.
        Transport errors are retried with linear backoff; after the final
        failure of a local provider the other reachable local service is
        tried once.
        """
        provider = self.settings.provider
        correlation_id = self.event_log.start_operation(
            "llm-call", f"Starting LLM call with provider: {provider}",
            {"provider": provider, "model": self.settings.model},
        )

        if self._api_key_missing(provider):
            return None

        errors = self.validate_provider_config(provider)
        if errors:
            logger.error(f"event=llm_config_invalid provider={provider} errors={'; '.join(errors)}")
            self.event_log.log("error", "llm-call", "Configuration validation failed", {"errors": errors}, correlation_id)
            return None

        retries = max(1, self.settings.retries)
        for attempt in range(retries):
            started = time.monotonic()
            try:
                result = await asyncio.wait_for(
                    self._call_provider(provider, system_prompt, user_prompt),
                    timeout=self.settings.timeout,
                )
                if result:
                    duration_ms = int((time.monotonic() - started) * 1000)
                    logger.info(
                        f"event=llm_call_ok provider={provider} attempt={attempt + 1} "
                        f"duration_ms={duration_ms} chars={len(result)}"
                    )
                    self.event_log.log(
                        "info", "llm-call", f"LLM call successful on attempt {attempt + 1}",
                        {"duration_ms": duration_ms, "response_length": len(result)}, correlation_id,
                    )
                    return result
            except _CALL_ERRORS as e:
                logger.warning(f"event=llm_attempt_failed provider={provider} attempt={attempt + 1} error={e}")
                self.event_log.log(
                    "warn", "llm-call", f"Attempt {attempt + 1} failed for {provider}",
                    {"error": str(e)}, correlation_id,
                )
                if attempt == retries - 1:
                    if provider in LOCAL_PROVIDERS:
                        return await self._try_local_fallback(system_prompt, user_prompt, correlation_id)
                else:
                    await self._sleep(1.0 * (attempt + 1))
        return None

    async def _try_local_fallback(
        self, system_prompt: str, user_prompt: str, correlation_id: Optional[str] = None
    ) -> Optional[str]:
        tried = []
        for name in LOCAL_PROVIDERS:
            if name == self.settings.provider:
                continue
            # Re-probes when the cached entry has expired
            service = await self.get_service(name)
            if not service.available:
                continue
            tried.append(name)
            logger.info(f"event=llm_fallback provider={service.name}")
            try:
                return await asyncio.wait_for(
                    self._call_provider(service.name, system_prompt, user_prompt),
                    timeout=self.settings.timeout,
                )
            except _CALL_ERRORS as e:
                logger.warning(f"event=llm_fallback_failed provider={service.name} error={e}")
        logger.error(
            f"event=llm_all_failed primary={self.settings.provider} "
            f"tried={tried}"
        )
        self.event_log.log("error", "llm-call", "All LLM services failed including fallbacks", None, correlation_id)
        return None

    async def _call_provider(self, provider: str, system_prompt: str, user_prompt: str) -> Optional[str]:
        if provider == "openai":
            return await self._call_openai(system_prompt, user_prompt)
        if provider == "anthropic":
            return await self._call_anthropic(system_prompt, user_prompt)
        if provider == "ollama":
            return await self._call_ollama(system_prompt, user_prompt)
        if provider == "lmstudio":
            return await self._call_lmstudio(system_prompt, user_prompt)
        raise LLMProviderError(provider, f"Unsupported provider: {provider}")

    def _raise_for_status(self, provider: str, resp: httpx.Response) -> None:
        if resp.is_success:
            return
        message = f"{provider} API error: {resp.status_code}"
        hint = _STATUS_HINTS.get(provider, {}).get(resp.status_code)
        if hint:
            message += f". {hint}"
        logger.error(f"event=llm_http_error provider={provider} status={resp.status_code} body={resp.text[:500]!r}")
        raise LLMProviderError(provider, message, status=resp.status_code)

    async def _call_openai(self, system_prompt: str, user_prompt: str) -> Optional[str]:
        model = self.settings.model or "gpt-4o-mini"
        body = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
        }
        logger.debug(f"event=llm_request provider=openai model={model} api_key={mask_key(self.settings.api_key)}")
        resp = await self.http.post(
            OPENAI_CHAT_URL,
            json=body,
            headers={"Authorization": f"Bearer {self.settings.api_key}"},
        )
        self._raise_for_status("openai", resp)
        data = resp.json()
        choices = data.get("choices") or []
        return (choices[0].get("message") or {}).get("content") if choices else None

    def _anthropic_endpoint(self) -> str:
        endpoint = self.settings.anthropic_url or ANTHROPIC_MESSAGES_URL
        if "anthropic.com" in endpoint and "/v1/messages" not in endpoint:
            logger.warning(f"event=anthropic_url_fixed original={endpoint}")
            endpoint = ANTHROPIC_MESSAGES_URL
        return endpoint

    async def _call_anthropic(self, system_prompt: str, user_prompt: str) -> Optional[str]:
        model = self.settings.model or "claude-3-5-haiku-20241022"
        body = {
            "model": model,
            "max_tokens": self.settings.max_tokens,
            "temperature": self.settings.temperature,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        logger.debug(f"event=llm_request provider=anthropic model={model} api_key={mask_key(self.settings.api_key)}")
        resp = await self.http.post(
            self._anthropic_endpoint(),
            json=body,
            headers={"x-api-key": self.settings.api_key, "anthropic-version": ANTHROPIC_VERSION},
        )
        self._raise_for_status("anthropic", resp)
        content = resp.json().get("content") or []
        return content[0].get("text") if content else None

    async def _local_model(self, name: str) -> str:
        service = await self.get_service(name)
        if not service.available or not service.models:
            raise LLMProviderError(name, f"{name} service not available or no models loaded")
        if self.settings.model in service.models:
            return self.settings.model
        return service.models[0]

    async def _call_ollama(self, system_prompt: str, user_prompt: str) -> Optional[str]:
        model = await self._local_model("ollama")
        logger.debug(f"event=llm_request provider=ollama model={model}")
        response = await self._ollama_client().chat(
            model=model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            stream=False,
            options={"temperature": self.settings.temperature, "num_predict": self.settings.max_tokens},
        )
        message = response["message"] if "message" in response else None
        if not message:
            return None
        return message["content"] or None

    async def _call_lmstudio(self, system_prompt: str, user_prompt: str) -> Optional[str]:
        model = await self._local_model("lmstudio")
        body = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
        }
        logger.debug(f"event=llm_request provider=lmstudio model={model}")
        resp = await self.http.post(
            f"{self.settings.lmstudio_url}/v1/chat/completions",
            json=body,
            headers={"Authorization": "Bearer lm-studio"},
        )
        self._raise_for_status("lmstudio", resp)
        choices = resp.json().get("choices") or []
        return (choices[0].get("message") or {}).get("content") if choices else None

    # ------------------------------------------------------------------
    # Model listings

    def default_models(self, provider: str) -> List[str]:
        return list(DEFAULT_MODELS.get(provider, []))

    async def fetch_cloud_models(self, provider: str) -> List[str]:
        """Models for a cloud provider, cached per provider and key suffix"""
        if provider not in ("openai", "anthropic"):
            raise ValueError(f"Not a cloud provider: {provider}")
        if not self.settings.api_key:
            return []
        cache_key = f"{provider}-{self.settings.api_key[-4:]}"
        if cache_key in self._cloud_model_cache:
            return list(self._cloud_model_cache[cache_key])

        if provider == "anthropic":
            models = list(ANTHROPIC_KNOWN_MODELS)
            self._cloud_model_cache[cache_key] = models
            return list(models)

        try:
            resp = await self.http.get(
                OPENAI_MODELS_URL, headers={"Authorization": f"Bearer {self.settings.api_key}"}
            )
            self._raise_for_status("openai", resp)
            data = resp.json().get("data") or []
        except (httpx.HTTPError, LLMProviderError, ValueError) as e:
            logger.warning(f"event=model_list_failed provider=openai error={e}")
            return self.default_models("openai")
        models = sorted(
            m["id"] for m in data
            if isinstance(m, dict) and "gpt" in m.get("id", "") and "instruct" not in m.get("id", "")
        )
        self._cloud_model_cache[cache_key] = models
        return models or self.default_models("openai")

    async def list_models(self, provider: str) -> List[str]:
        if provider in LOCAL_PROVIDERS:
            service = await self.get_service(provider)
            return list(service.models)
        return await self.fetch_cloud_models(provider)

    async def cleanup(self) -> None:
        self._cloud_model_cache.clear()
        self._api_key_missing_notified.clear()
        self.service_cache.clear()
        await self.aclose()
