"""Tests for the embedding gateway and the OpenAI embeddings client."""

import json

import httpx
import pytest
from unittest.mock import AsyncMock

from moodfeed.config import ConfigurationError
from moodfeed.core.contracts import CandidateItem, Comment
from moodfeed.core.embeddings import EmbeddingGateway, content_item_text
from moodfeed.errors import EmbeddingUnavailable, TransientCollaboratorError
from moodfeed.providers.openai_embeddings import EmbeddingsClient, EmbeddingsError


def _model(vector=None, error=None) -> AsyncMock:
    model = AsyncMock()
    if error is not None:
        model.create_embedding.side_effect = error
    else:
        model.create_embedding.return_value = vector
    return model


def test_content_item_text_order_and_blanks():
    item = CandidateItem(id="v1", title="Rainy lofi", description="  ")
    comments = [Comment("so relaxing"), Comment(""), Comment("studied to this")]

    assert content_item_text(item, comments) == "Rainy lofi so relaxing studied to this"


@pytest.mark.anyio
async def test_embed_content_item_without_text_skips_model():
    model = _model([0.1, 0.2, 0.3])
    gateway = EmbeddingGateway(model, dimensions=3)

    vector = await gateway.embed_content_item(CandidateItem(id="v1"), [])

    assert vector is None
    model.create_embedding.assert_not_called()


@pytest.mark.anyio
async def test_embed_content_item_joins_fields():
    model = _model([0.1, 0.2, 0.3])
    gateway = EmbeddingGateway(model, dimensions=3)
    item = CandidateItem(id="v1", title="Morning stretch", description="Five minutes")

    vector = await gateway.embed_content_item(item, [Comment("needed this")])

    assert vector == [0.1, 0.2, 0.3]
    model.create_embedding.assert_awaited_once_with("Morning stretch Five minutes needed this")


@pytest.mark.anyio
async def test_embed_wrong_dimension_is_configuration_error():
    gateway = EmbeddingGateway(_model([0.1, 0.2]), dimensions=3)

    with pytest.raises(ConfigurationError):
        await gateway.embed("hello")


@pytest.mark.anyio
@pytest.mark.parametrize(
    "error",
    [
        EmbeddingsError("Server error: 503", status_code=503),
        TransientCollaboratorError("not configured", collaborator="embedding"),
        httpx.ConnectError("refused"),
    ],
)
async def test_embed_transient_failure_is_embedding_unavailable(error):
    gateway = EmbeddingGateway(_model(error=error), dimensions=3)

    with pytest.raises(EmbeddingUnavailable) as exc_info:
        await gateway.embed("hello")

    assert exc_info.value.collaborator == "embedding"


@pytest.mark.anyio
async def test_embeddings_client_posts_model_and_input():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"data": [{"embedding": [0.5, 0.25]}]})

    client = EmbeddingsClient(
        api_key="sk-test",
        model="text-embedding-3-small",
        transport=httpx.MockTransport(handler),
    )
    try:
        vector = await client.create_embedding("calm evening")
    finally:
        await client.close()

    assert vector == [0.5, 0.25]
    assert seen["path"] == "/v1/embeddings"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "text-embedding-3-small"
    assert seen["body"]["input"] == "calm evening"


@pytest.mark.anyio
async def test_embeddings_client_does_not_retry_client_errors():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(400, json={"error": {"message": "bad input"}})

    client = EmbeddingsClient(api_key="sk-test", transport=httpx.MockTransport(handler))
    try:
        with pytest.raises(EmbeddingsError) as exc_info:
            await client.create_embedding("x")
    finally:
        await client.close()

    assert exc_info.value.status_code == 400
    assert len(calls) == 1
