from .service_cache import ServiceAvailabilityCache
from .llm_providers import LLMProviderManager

__all__ = ["ServiceAvailabilityCache", "LLMProviderManager"]
