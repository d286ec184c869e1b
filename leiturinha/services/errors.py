"""
Error taxonomy for Leiturinha

Provider failures fall into four kinds:
- ProviderAuthError: bad or missing credentials (fatal)
- ProviderRateLimitError: 429 from the provider (retryable by the user)
- ProviderConnectivityError: network failure or timeout (retryable by the user)
- GenerationFormatError: reply does not match the requested format (fatal)

The gateway never raises these at callers; it returns a ProviderResult
tagged with the outcome. Services unwrap it where an exception is the
natural control flow (story assembly) and branch on it where a degraded
result is preferred (illustrations).

Every error carries a Portuguese `user_message` safe to show to parents.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderError(Exception):
    """Base class for generative-AI provider failures."""

    retryable: bool = False
    user_message: str = "Não foi possível concluir a operação. Por favor, tente novamente."

    def __init__(self, message: str, provider: Optional[str] = None):
        self.provider = provider
        super().__init__(message)


class ProviderAuthError(ProviderError):
    retryable = False
    user_message = "Falha na autenticação com a API. Verifique a chave da API."


class ProviderRateLimitError(ProviderError):
    retryable = True
    user_message = "Limite de requisições da API excedido. Tente novamente mais tarde."

    def __init__(self, message: str, provider: Optional[str] = None, retry_after: Optional[float] = None):
        self.retry_after = retry_after
        super().__init__(message, provider)


class ProviderConnectivityError(ProviderError):
    retryable = True
    user_message = "Erro de conexão. Verifique sua conexão à internet."


class GenerationFormatError(ProviderError):
    retryable = False
    user_message = "A resposta do serviço de IA veio em um formato inesperado. Por favor, tente novamente."


class SelectionError(ValueError):
    """Wizard selection refers to unknown or incompatible catalog entries."""

    def __init__(self, message: str, user_message: Optional[str] = None):
        self.user_message = user_message or message
        super().__init__(message)


class EntitlementError(PermissionError):
    """The session's plan does not include the requested feature."""

    def __init__(self, message: str, user_message: Optional[str] = None):
        self.user_message = user_message or message
        super().__init__(message)


class StoryNotFoundError(LookupError):
    user_message = "História não encontrada"


class ChapterNotFoundError(IndexError):
    user_message = "Capítulo não encontrado"


class ReadingSessionNotFoundError(LookupError):
    user_message = "Sessão de leitura não encontrada"


class ChildProfileNotFoundError(LookupError):
    user_message = "Perfil da criança não encontrado"


class StorageError(Exception):
    """Persistence layer failure."""
    user_message = "Erro ao salvar os dados. Por favor, tente novamente."


# =========================================================================
# Tagged provider results
# =========================================================================

class ProviderOutcome(str, Enum):
    OK = "ok"
    FORMAT_ERROR = "format_error"
    AUTH_ERROR = "auth_error"
    RATE_LIMIT = "rate_limit"
    CONNECTIVITY = "connectivity"


_OUTCOME_BY_ERROR = {
    ProviderAuthError: ProviderOutcome.AUTH_ERROR,
    ProviderRateLimitError: ProviderOutcome.RATE_LIMIT,
    ProviderConnectivityError: ProviderOutcome.CONNECTIVITY,
    GenerationFormatError: ProviderOutcome.FORMAT_ERROR,
}


@dataclass
class ProviderResult(Generic[T]):
    """Ok{data} | FormatError | AuthError | RateLimitError | ConnectivityError"""

    outcome: ProviderOutcome
    data: Optional[T] = None
    error: Optional[ProviderError] = None
    provider: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome == ProviderOutcome.OK

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.retryable

    def unwrap(self) -> T:
        """Return the data or raise the typed error."""
        if self.ok:
            return self.data
        raise self.error

    @classmethod
    def success(cls, data: T, provider: Optional[str] = None) -> "ProviderResult[T]":
        return cls(outcome=ProviderOutcome.OK, data=data, provider=provider)

    @classmethod
    def failure(cls, error: ProviderError) -> "ProviderResult[T]":
        outcome = ProviderOutcome.CONNECTIVITY
        for error_type, mapped in _OUTCOME_BY_ERROR.items():
            if isinstance(error, error_type):
                outcome = mapped
                break
        return cls(outcome=outcome, error=error, provider=error.provider)


# =========================================================================
# Exception classification
# =========================================================================

RATE_LIMIT_INDICATORS = [
    "429",
    "rate limit",
    "rate_limit",
    "ratelimit",
    "too many requests",
    "quota exceeded",
    "requests per minute",
    "tokens per minute",
]

AUTH_INDICATORS = [
    "401",
    "api key",
    "api_key",
    "invalid_api_key",
    "authentication",
    "unauthorized",
    "permission denied",
]

CONNECTIVITY_INDICATORS = [
    "connection",
    "timed out",
    "timeout",
    "enotfound",
    "econnrefused",
    "name or service not known",
    "temporarily unavailable",
    "502",
    "503",
    "504",
]


def _extract_retry_after(error: Exception) -> Optional[float]:
    """Extract Retry-After header value if present"""
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    retry_after = headers.get("Retry-After") or headers.get("retry-after")
    if retry_after:
        try:
            return float(retry_after)
        except ValueError:
            return None
    return None


def classify_provider_exception(error: Exception, provider: str) -> ProviderError:
    """
    Convert an SDK exception (OpenAI, Anthropic, httpx, asyncio) into the
    provider error taxonomy.

    Both SDKs expose the same exception names (AuthenticationError,
    RateLimitError, APIConnectionError, APITimeoutError) and a `status_code`
    on HTTP errors, so classification works on type names and status codes
    without importing either SDK here.
    """
    if isinstance(error, ProviderError):
        return error

    message = str(error) or type(error).__name__
    error_type = type(error).__name__.lower()
    status_code = getattr(error, "status_code", None)

    if isinstance(error, (asyncio.TimeoutError, TimeoutError, ConnectionError)):
        return ProviderConnectivityError(message, provider)

    if "ratelimit" in error_type or status_code == 429:
        return ProviderRateLimitError(message, provider, retry_after=_extract_retry_after(error))
    if "authentication" in error_type or "permissiondenied" in error_type or status_code in (401, 403):
        return ProviderAuthError(message, provider)
    if "connection" in error_type or "timeout" in error_type:
        return ProviderConnectivityError(message, provider)
    if isinstance(status_code, int) and status_code >= 500:
        return ProviderConnectivityError(message, provider)

    lowered = message.lower()
    if any(indicator in lowered for indicator in RATE_LIMIT_INDICATORS):
        return ProviderRateLimitError(message, provider, retry_after=_extract_retry_after(error))
    if any(indicator in lowered for indicator in AUTH_INDICATORS):
        return ProviderAuthError(message, provider)
    if any(indicator in lowered for indicator in CONNECTIVITY_INDICATORS):
        return ProviderConnectivityError(message, provider)

    # 4xx request errors mean the prompt and the provider disagree
    logger.warning(f"Unclassified provider error from {provider}: {type(error).__name__}: {message}")
    return GenerationFormatError(message, provider)
