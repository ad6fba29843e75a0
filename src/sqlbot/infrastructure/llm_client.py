"""
Chat-completion clients.

Two interchangeable backends implement LanguageModelClient.complete():

- SDKChatClient: LangChain's ChatOpenAI (OpenAI SDK underneath), used for
  providers matched by sdk_base_url_patterns / sdk_model_patterns.
- HTTPChatClient: a plain httpx POST to {base_url}/chat/completions, used
  for every other OpenAI-compatible endpoint (DeepSeek by default).

create_llm_client() picks the backend once per configuration snapshot;
callers never choose per call.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Mapping, Optional

import httpx
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import SecretStr

from ..config import LLMConfig
from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id
from ..utils.text_utils import InputValidator
from ..domain.errors import LLMError


logger = get_module_logger()

BACKEND_SDK = "sdk"
BACKEND_HTTP = "http"


def resolve_model(alias: str, model_map: Mapping[str, str]) -> str:
    """
    Resolve a model alias to a concrete model id.

    Unmapped aliases are passed through verbatim, so a raw model id works
    as its own alias.
    """
    return model_map.get(alias, alias)


def select_backend(config: LLMConfig) -> str:
    """
    Decide which backend serves a configuration.

    The SDK backend is used when the base URL or the resolved model id
    contains one of the configured SDK patterns; otherwise plain HTTP.
    """
    base_url = config.base_url.lower()
    model = resolve_model(config.default_model, config.model_map).lower()
    if any(pattern.lower() in base_url for pattern in config.sdk_base_url_patterns):
        return BACKEND_SDK
    if any(pattern.lower() in model for pattern in config.sdk_model_patterns):
        return BACKEND_SDK
    return BACKEND_HTTP


class LanguageModelClient(ABC):
    """
    A chat-completion call against one configured provider and model.

    Implementations raise LLMError on missing credential, transport
    failure, no choices or empty content; they never return "".
    """

    backend: str = ""

    def __init__(self, config: LLMConfig):
        self.config = config
        self.model = resolve_model(config.default_model, config.model_map)

    def has_credentials(self) -> bool:
        return bool(self.config.api_key)

    def _check_request(self, user_prompt: str, system_prompt: Optional[str]) -> None:
        if not self.has_credentials():
            raise LLMError("LLM API key is not configured")
        if not user_prompt or not user_prompt.strip():
            raise LLMError("LLM prompt must not be empty")
        try:
            InputValidator.validate_total_chars(
                prompt=user_prompt,
                system_prompt=system_prompt,
                max_chars=self.config.max_input_chars,
            )
        except ValueError as e:
            raise LLMError(str(e)) from e

    @abstractmethod
    async def complete(
        self,
        user_prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """
        Run one chat completion.

        Args:
            user_prompt: User message content
            system_prompt: Optional system message
            temperature: Optional override of the configured temperature

        Returns:
            Non-empty completion text

        Raises:
            LLMError: On any failure
        """

    async def close(self) -> None:
        """Release network resources."""


class SDKChatClient(LanguageModelClient):
    """
    Chat client using LangChain's ChatOpenAI.

    The underlying ChatOpenAI is built on first use, so a client for a
    configuration without an API key can exist (and report itself) without
    failing at construction time.
    """

    backend = BACKEND_SDK

    def __init__(self, config: LLMConfig):
        super().__init__(config)
        self._llm: Optional[ChatOpenAI] = None

    def _get_llm(self) -> ChatOpenAI:
        if self._llm is None:
            try:
                self._llm = ChatOpenAI(
                    model=self.model,
                    api_key=SecretStr(self.config.api_key or ""),
                    base_url=self.config.base_url,
                    temperature=self.config.temperature,
                    max_completion_tokens=self.config.max_tokens,
                    timeout=self.config.timeout_seconds,
                    max_retries=self.config.max_retries,
                )
            except Exception as e:
                raise LLMError(f"Failed to initialize LLM client: {e}") from e
        return self._llm

    async def complete(
        self,
        user_prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> str:
        self._check_request(user_prompt, system_prompt)
        trace_id = current_trace_id()

        messages: List[BaseMessage] = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        messages.append(HumanMessage(content=user_prompt))

        logger.info(
            "Generating LLM response",
            backend=self.backend,
            model=self.model,
            prompt_length=len(user_prompt),
            temperature=temperature if temperature is not None else self.config.temperature,
            trace_id=trace_id,
        )

        try:
            llm = self._get_llm()
            runnable = llm.bind(temperature=temperature) if temperature is not None else llm
            response = await runnable.ainvoke(messages)
        except LLMError:
            raise
        except Exception as e:
            error_msg = f"LLM generation failed: {e}"
            logger.error(error_msg, error_type=type(e).__name__, backend=self.backend, trace_id=trace_id)
            raise LLMError(error_msg) from e

        content = str(response.content) if response is not None and response.content else ""
        if not content.strip():
            raise LLMError("LLM returned empty response")

        logger.info("LLM response generated successfully", response_length=len(content), trace_id=trace_id)
        return content


class HTTPChatClient(LanguageModelClient):
    """
    Chat client for any OpenAI-compatible /chat/completions endpoint.

    Sends {model, messages, temperature, stream: false} with a Bearer key.
    """

    backend = BACKEND_HTTP

    def __init__(self, config: LLMConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(config)
        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"
        self._http = httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(float(config.timeout_seconds)),
            transport=transport,
        )

    async def complete(
        self,
        user_prompt: str,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> str:
        self._check_request(user_prompt, system_prompt)
        trace_id = current_trace_id()

        messages: List[Dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": user_prompt})

        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature if temperature is not None else self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "stream": False,
        }

        logger.info(
            "Generating LLM response",
            backend=self.backend,
            model=self.model,
            prompt_length=len(user_prompt),
            temperature=payload["temperature"],
            trace_id=trace_id,
        )

        try:
            response = await self._http.post("/chat/completions", json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            error_msg = f"LLM request failed with HTTP {e.response.status_code}: {e.response.text[:300]}"
            logger.error(error_msg, backend=self.backend, trace_id=trace_id)
            raise LLMError(error_msg) from e
        except httpx.HTTPError as e:
            error_msg = f"LLM request failed: {type(e).__name__}: {e}"
            logger.error(error_msg, backend=self.backend, trace_id=trace_id)
            raise LLMError(error_msg) from e
        except ValueError as e:
            raise LLMError(f"LLM returned a non-JSON response: {e}") from e

        choices = body.get("choices") if isinstance(body, dict) else None
        if not choices:
            raise LLMError("LLM returned no choices")

        message = choices[0].get("message") or {}
        content = message.get("content")
        if not isinstance(content, str) or not content.strip():
            raise LLMError("LLM returned empty response")

        logger.info("LLM response generated successfully", response_length=len(content), trace_id=trace_id)
        return content

    async def close(self) -> None:
        await self._http.aclose()


def create_llm_client(
    config: LLMConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> LanguageModelClient:
    """
    Build the client for one configuration snapshot.

    Args:
        config: LLM configuration snapshot
        transport: Optional httpx transport for the HTTP backend

    Returns:
        SDKChatClient or HTTPChatClient
    """
    backend = select_backend(config)
    client: LanguageModelClient
    if backend == BACKEND_SDK:
        client = SDKChatClient(config)
    else:
        client = HTTPChatClient(config, transport=transport)

    logger.info(
        "LLM client created",
        backend=backend,
        base_url=config.base_url,
        alias=config.default_model,
        model=client.model,
        api_key_configured=client.has_credentials(),
    )
    return client
