"""
Embedding Client

This module implements the embedding client used by both the indexing
dispatcher and the query pipeline. It calls the OpenAI embeddings API (or
any compatible provider) and is responsible for:

- Sequential, order-preserving batching of text inputs
- Network and transport error isolation
- Strict response validation
- All-or-nothing results: a failed batch never yields partial vectors

The model name and dimension come from configuration, never from callers.
The class is stateless and safe to reuse across requests.
"""

from __future__ import annotations

from typing import List, Sequence, Optional
import logging
import httpx

from ..core.errors import EmbeddingProviderError

logger = logging.getLogger("post_search.embedder")


class Embedder:
    """
    Asynchronous embedding generator.

    This class performs no caching and no retries; callers own the retry
    policy.
    """

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        base_url: str = "https://api.openai.com/v1/embeddings",
        timeout: float = 60.0,
        batch_size: int = 1,
        dimensions: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize an Embedder.

        Parameters
        ----------
        api_key : str
            Provider API key.

        model : str
            Embedding model name.

        base_url : str
            URL of the embeddings endpoint.

        timeout : float
            HTTP timeout for each request.

        batch_size : int
            Number of texts sent per request. Requests are issued one after
            another so provider load stays bounded.

        dimensions : Optional[int]
            Expected vector length. When set, responses of another length are
            rejected.

        transport : Optional[httpx.AsyncBaseTransport]
            Custom httpx transport (tests use ``httpx.MockTransport``).
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1; got {batch_size}")

        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.batch_size = batch_size
        self.dimensions = dimensions
        self._transport = transport

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(self, text: str) -> List[float]:
        """
        Embed a single text.

        Raises
        ------
        EmbeddingProviderError
            If the request fails or the response is malformed.
        """
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Generate embeddings for a sequence of texts, preserving input order.

        Parameters
        ----------
        texts : Sequence[str]
            Input strings.

        Returns
        -------
        List[List[float]]
            One vector per input, in input order.

        Raises
        ------
        EmbeddingProviderError
            If any batch fails or any response is malformed.
        """
        if not texts:
            return []

        all_embeddings: List[List[float]] = []
        headers = {"Authorization": f"Bearer {self.api_key}"}

        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            for start in range(0, len(texts), self.batch_size):
                batch = list(texts[start : start + self.batch_size])
                payload = {
                    "model": self.model,
                    "input": batch,
                }

                try:
                    response = await client.post(
                        self.base_url,
                        json=payload,
                        headers=headers,
                    )
                    response.raise_for_status()
                    data = response.json()
                except httpx.HTTPError as exc:
                    logger.error(
                        "Embedding request failed (%s): batch size=%d, error=%s",
                        type(exc).__name__,
                        len(batch),
                        str(exc),
                    )
                    raise EmbeddingProviderError(
                        f"Embedding generation failed: {type(exc).__name__}"
                    ) from exc
                except ValueError as exc:
                    raise EmbeddingProviderError(
                        "Embedding response is not valid JSON."
                    ) from exc

                embeddings = self._extract_embeddings(data, expected=len(batch))
                all_embeddings.extend(embeddings)

        return all_embeddings

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _extract_embeddings(self, data: dict, expected: int) -> List[List[float]]:
        """
        Parse and validate embedding output format.

        OpenAI returns:
            { "data": [ {"index": 0, "embedding": [...]}, ... ] }

        Records are re-ordered by ``index`` when present.

        Raises
        ------
        EmbeddingProviderError
            If the API returns unexpected structure.
        """
        if not isinstance(data, dict) or "data" not in data:
            raise EmbeddingProviderError("Embedding response missing 'data' field.")

        records = data["data"]
        if not isinstance(records, list):
            raise EmbeddingProviderError("'data' field must be a list.")

        if len(records) != expected:
            raise EmbeddingProviderError(
                f"Expected {expected} embeddings, received {len(records)}."
            )

        for index, record in enumerate(records):
            if not isinstance(record, dict) or "embedding" not in record:
                raise EmbeddingProviderError(
                    f"Malformed embedding record at index {index}: {record!r}"
                )

        if all(isinstance(r.get("index"), int) for r in records):
            records = sorted(records, key=lambda r: r["index"])

        embeddings: List[List[float]] = []

        for index, record in enumerate(records):
            emb = record["embedding"]
            if not isinstance(emb, list) or not emb or not all(
                isinstance(x, (float, int)) for x in emb
            ):
                raise EmbeddingProviderError(
                    f"Invalid embedding vector at index {index}: must be float list."
                )

            if self.dimensions is not None and len(emb) != self.dimensions:
                raise EmbeddingProviderError(
                    f"Embedding at index {index} has {len(emb)} dimensions; "
                    f"expected {self.dimensions}."
                )

            embeddings.append([float(x) for x in emb])

        return embeddings
