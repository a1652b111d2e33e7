"""Tests for embedding providers."""

import threading
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from adlex.config import settings
from adlex.core.exceptions import APIClientError, EmbeddingServiceError
from adlex.services.embedding.embedding_service import (
    LocalEmbeddingService,
    RemoteEmbeddingService,
    create_embedding_service_from_settings,
)


@pytest.fixture
def mock_client():
    client = MagicMock()
    client.create_embedding = AsyncMock()
    return client


@pytest.mark.asyncio
async def test_remote_embedding(mock_client):
    mock_client.create_embedding.return_value = [0.1, 0.2, 0.3]
    service = RemoteEmbeddingService(mock_client, model_name="text-embedding-3-small", dimensions=3)

    vector = await service.embed("がんが治る")

    assert vector == [0.1, 0.2, 0.3]
    mock_client.create_embedding.assert_awaited_once_with("text-embedding-3-small", "がんが治る", dimensions=3)


@pytest.mark.asyncio
async def test_remote_failure_is_wrapped(mock_client):
    mock_client.create_embedding.side_effect = APIClientError("429 Too Many Requests")
    service = RemoteEmbeddingService(mock_client, model_name="m")

    with pytest.raises(EmbeddingServiceError):
        await service.embed("text")


@pytest.mark.asyncio
async def test_dimension_mismatch_is_rejected(mock_client):
    mock_client.create_embedding.return_value = [0.1, 0.2]
    service = RemoteEmbeddingService(mock_client, model_name="m", dimensions=1536)

    with pytest.raises(EmbeddingServiceError, match="dimensions"):
        await service.embed("text")


@pytest.mark.asyncio
async def test_local_embedding_uses_loaded_model():
    service = LocalEmbeddingService("intfloat/multilingual-e5-small")
    model = MagicMock()
    model.encode.return_value = [0.5, 0.25]
    service._model = model

    vector = await service.embed("がんが治る")

    assert vector == [0.5, 0.25]
    model.encode.assert_called_once_with("がんが治る", normalize_embeddings=True)


@pytest.mark.asyncio
async def test_local_encode_failure_is_wrapped():
    service = LocalEmbeddingService("m")
    service._model = MagicMock()
    service._model.encode.side_effect = RuntimeError("CUDA out of memory")

    with pytest.raises(EmbeddingServiceError):
        await service.embed("text")


@pytest.mark.asyncio
async def test_local_model_loads_off_the_event_loop():
    service = LocalEmbeddingService("m")
    loader_threads = []
    model = MagicMock()
    model.encode.return_value = [1.0]

    def load_model():
        loader_threads.append(threading.current_thread())
        return model

    with patch.object(service, "_load_model", side_effect=load_model):
        assert await service.embed("text") == [1.0]
        assert await service.embed("text") == [1.0]

    assert len(loader_threads) == 1
    assert loader_threads[0] is not threading.main_thread()


@pytest.mark.asyncio
async def test_missing_local_extra_is_an_embedding_failure():
    service = LocalEmbeddingService("m")

    with patch.dict("sys.modules", {"sentence_transformers": None}):
        with pytest.raises(EmbeddingServiceError, match="local-embeddings"):
            await service.embed("text")


def test_factory_selects_local_provider():
    llm_settings = settings.llm.model_copy(update={"embedding_provider": "local"})

    service = create_embedding_service_from_settings(llm_settings)

    assert isinstance(service, LocalEmbeddingService)
    assert service.model_name == llm_settings.local_embedding_model


def test_factory_builds_remote_provider():
    llm_settings = settings.llm.model_copy(
        update={"embedding_provider": "openai", "openai_api_key": "sk-test", "embedding_http_max_attempts": 3}
    )

    with patch(
        "adlex.services.embedding.embedding_service.create_llm_client_from_settings"
    ) as mock_factory:
        service = create_embedding_service_from_settings(llm_settings)

    assert isinstance(service, RemoteEmbeddingService)
    assert service.dimensions == llm_settings.embedding_dimensions
    mock_factory.assert_called_once_with(llm_settings, provider="openai", max_attempts=3)
