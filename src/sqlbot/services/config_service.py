"""
Config Service for runtime LLM settings.

The LLM settings can change while the server runs (API key, base URL,
model alias, temperature). Changes are published as immutable, versioned
snapshots together with a client built for that snapshot; a pipeline run
captures the pair once at its start, so an update never affects a run in
flight.

Usage:
    config_service = ConfigService(settings.llm)
    snapshot, client = config_service.current()
    config_service.switch_model("GPT-4")
"""

import threading
from dataclasses import dataclass
from typing import Any, Callable, List, Mapping, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from sqlbot.config import LLMConfig
from sqlbot.config_constants import CONNECTION_TEST_PROMPT
from sqlbot.domain.errors import InputError, LLMError
from sqlbot.domain.responses import ConnectionTestResponse, LLMConfigResponse
from sqlbot.infrastructure.llm_client import LanguageModelClient, create_llm_client
from sqlbot.utils.logging import get_module_logger
from sqlbot.utils.tracing import current_trace_id

logger = get_module_logger()

ClientFactory = Callable[[LLMConfig], LanguageModelClient]


@dataclass(frozen=True)
class LLMSnapshot:
    version: int
    config: LLMConfig


class ConfigService:
    """
    Owner of the LLM configuration snapshots.

    Clients replaced by an update are closed on shutdown rather than at
    swap time, since in-flight runs may still hold them.
    """

    def __init__(self, initial: LLMConfig, client_factory: ClientFactory = create_llm_client):
        self._factory = client_factory
        self._lock = threading.Lock()
        self._snapshot = LLMSnapshot(version=1, config=initial.model_copy(deep=True))
        self._client = client_factory(self._snapshot.config)
        self._retired: List[LanguageModelClient] = []

    def current(self) -> Tuple[LLMSnapshot, LanguageModelClient]:
        """The active snapshot and its client, read together."""
        with self._lock:
            return self._snapshot, self._client

    def client(self) -> LanguageModelClient:
        return self.current()[1]

    def update_llm_config(self, changes: Mapping[str, Any]) -> LLMSnapshot:
        """
        Apply a partial update and publish it as a new snapshot.

        Args:
            changes: Field -> new value; None values are ignored

        Raises:
            InputError: If the resulting configuration is invalid
        """
        updates = {key: value for key, value in changes.items() if value is not None}
        with self._lock:
            config = self._validated(self._snapshot.config, updates)
            return self._publish(config, changed=sorted(updates))

    def switch_model(self, alias: str) -> LLMSnapshot:
        """
        Make `alias` the active model.

        Raises:
            InputError: If the alias is not in model_map
        """
        with self._lock:
            current = self._snapshot.config
            if alias not in current.model_map:
                raise InputError(
                    f"Unknown model alias: {alias}",
                    details={"available": sorted(current.model_map)},
                )
            config = current.model_copy(update={"default_model": alias})
            return self._publish(config, changed=["default_model"])

    async def test_connection(self, overrides: Optional[Mapping[str, Any]] = None) -> ConnectionTestResponse:
        """
        Test the provider with the current settings plus `overrides`.

        Nothing is published; the temporary client is closed afterwards.
        """
        trace_id = current_trace_id()
        updates = {key: value for key, value in (overrides or {}).items() if value is not None}
        with self._lock:
            config = self._validated(self._snapshot.config, updates)

        client = self._factory(config)
        try:
            reply = await client.complete(CONNECTION_TEST_PROMPT)
        except LLMError as e:
            logger.warning("LLM connection test failed", error=e.message, trace_id=trace_id)
            return ConnectionTestResponse(success=False, message=e.message)
        finally:
            await client.close()

        logger.info("LLM connection test succeeded", model=client.model, trace_id=trace_id)
        return ConnectionTestResponse(
            success=True,
            message=f"Connected to {client.model}: {reply.strip()[:100]}",
        )

    def describe(self) -> LLMConfigResponse:
        snapshot, client = self.current()
        config = snapshot.config
        return LLMConfigResponse(
            version=snapshot.version,
            base_url=config.base_url,
            default_model=config.default_model,
            resolved_model=client.model,
            model_map=dict(config.model_map),
            temperature=config.temperature,
            api_key_configured=bool(config.api_key),
            backend=client.backend,
        )

    async def close(self) -> None:
        with self._lock:
            clients = [*self._retired, self._client]
            self._retired = []
        for client in clients:
            await client.close()

    # Callers hold self._lock

    def _validated(self, base: LLMConfig, updates: Mapping[str, Any]) -> LLMConfig:
        try:
            return LLMConfig.model_validate({**base.model_dump(), **updates})
        except PydanticValidationError as e:
            raise InputError(
                "Invalid LLM configuration",
                details={"errors": [err["msg"] for err in e.errors()]},
            ) from e

    def _publish(self, config: LLMConfig, changed: List[str]) -> LLMSnapshot:
        client = self._factory(config)
        self._retired.append(self._client)
        self._snapshot = LLMSnapshot(version=self._snapshot.version + 1, config=config)
        self._client = client

        logger.info(
            "LLM configuration published",
            version=self._snapshot.version,
            changed=changed,
            model=client.model,
            backend=client.backend,
            trace_id=current_trace_id(),
        )
        return self._snapshot
