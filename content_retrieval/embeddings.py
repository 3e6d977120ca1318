"""Embedding generation via litellm."""

import asyncio
from typing import List

import litellm
from tqdm import tqdm

from .config import EmbeddingConfig
from .errors import InvalidQueryError
from .logging_config import get_logger

logger = get_logger(__name__)


class EmbeddingService:
    """Thin async wrapper around the provider's embedding endpoint.

    Provider errors are not caught or retried here.
    """

    def __init__(self, config: EmbeddingConfig | None = None):
        self.config = config or EmbeddingConfig()

    async def _create(self, input: str | List[str]) -> List[List[float]]:
        kwargs = {}
        if self.config.dimensions is not None:
            kwargs["dimensions"] = self.config.dimensions
        response = await litellm.aembedding(
            model=self.config.model,
            input=input,
            encoding_format="float",
            **kwargs,
        )
        return [item["embedding"] for item in response.data]

    async def embed(self, text: str) -> List[float]:
        """Embed a single, non-empty string."""
        if not text or not text.strip():
            raise InvalidQueryError("Cannot embed empty text")
        return (await self._create(text))[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed texts in one request; output order matches input order.

        Keeping the batch within the provider's limits is up to the caller,
        see :meth:`generate_embeddings`.
        """
        if not texts:
            raise InvalidQueryError("Cannot embed an empty batch")
        if any(not t or not t.strip() for t in texts):
            raise InvalidQueryError("Cannot embed empty text")
        embeddings = await self._create(list(texts))
        if len(embeddings) != len(texts):
            raise RuntimeError(
                f"Embedding provider returned {len(embeddings)} vectors "
                f"for {len(texts)} inputs"
            )
        return embeddings

    async def generate_embeddings(
        self,
        texts: List[str],
        batch_size: int | None = None,
    ) -> List[List[float]]:
        """Embed a large list of texts in provider-sized batches."""
        batch_size = batch_size or self.config.batch_size
        all_embeddings: List[List[float]] = []

        for i in tqdm(range(0, len(texts), batch_size), desc="Generating embeddings"):
            batch = texts[i : i + batch_size]
            all_embeddings.extend(await self.embed_batch(batch))

            # Rate-limit safety between batches
            if i + batch_size < len(texts):
                await asyncio.sleep(0.1)

        logger.info("Generated %d embeddings with %s", len(all_embeddings), self.config.model)
        return all_embeddings
