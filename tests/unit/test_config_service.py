"""Unit tests for the runtime LLM configuration snapshots."""

import pytest

from sqlbot.config import LLMConfig
from sqlbot.domain.errors import InputError, LLMError
from sqlbot.services.config_service import ConfigService


class RecordingFactory:
    """Client factory that builds scripted clients and remembers them."""

    def __init__(self, client_class, replies=("pong",)):
        self.client_class = client_class
        self.replies = replies
        self.clients = []

    def __call__(self, config: LLMConfig):
        client = self.client_class(list(self.replies), config)
        self.clients.append(client)
        return client


@pytest.fixture
def factory(fake_llm_factory):
    return RecordingFactory(fake_llm_factory)


@pytest.fixture
def config_service(factory):
    return ConfigService(LLMConfig(api_key="sk-initial"), client_factory=factory)


class TestSnapshots:

    def test_initial_snapshot(self, config_service, factory):
        snapshot, client = config_service.current()
        assert snapshot.version == 1
        assert client is factory.clients[0]
        assert client.model == "deepseek-chat"

    def test_update_publishes_new_version(self, config_service):
        before, old_client = config_service.current()

        after = config_service.update_llm_config({"temperature": 0.5, "api_key": None})

        assert after.version == 2
        assert after.config.temperature == 0.5
        assert after.config.api_key == "sk-initial"
        # The run that captured the old pair still sees the old values
        assert before.config.temperature == 0.1
        assert config_service.client() is not old_client

    def test_invalid_update_keeps_current_snapshot(self, config_service):
        with pytest.raises(InputError):
            config_service.update_llm_config({"temperature": "hot"})
        assert config_service.current()[0].version == 1

    def test_switch_model(self, config_service):
        snapshot = config_service.switch_model("GPT-4")

        assert snapshot.config.default_model == "GPT-4"
        assert config_service.client().model == "gpt-4-turbo"

    def test_switch_to_unknown_alias(self, config_service):
        with pytest.raises(InputError) as exc_info:
            config_service.switch_model("Claude")
        assert "GPT-4" in exc_info.value.details["available"]

    def test_describe(self, config_service):
        description = config_service.describe()
        assert description.version == 1
        assert description.resolved_model == "deepseek-chat"
        assert description.api_key_configured is True
        assert description.backend == "fake"

    @pytest.mark.asyncio
    async def test_close_closes_retired_clients(self, config_service, factory):
        config_service.switch_model("GPT-4")
        config_service.switch_model("GPT-3.5")

        await config_service.close()

        assert len(factory.clients) == 3
        assert all(client.closed for client in factory.clients)


class TestConnectionTest:

    @pytest.mark.asyncio
    async def test_success_does_not_publish(self, config_service, factory):
        result = await config_service.test_connection({"default_model": "GPT-4"})

        assert result.success
        assert result.message == "Connected to gpt-4-turbo: pong"
        assert config_service.current()[0].version == 1
        assert factory.clients[-1].closed

    @pytest.mark.asyncio
    async def test_failure_is_reported(self, config_service, fake_llm_factory):
        config_service._factory = RecordingFactory(fake_llm_factory, replies=(LLMError("HTTP 401: bad key"),))

        result = await config_service.test_connection()

        assert not result.success
        assert result.message == "HTTP 401: bad key"
