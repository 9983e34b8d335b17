"""
Search Routes

Semantic search over indexed posts. Errors are reported in the response
body rather than raised, so callers always get ``{message, error?}`` on
failure.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse

from .dependencies import get_search_pipeline
from .models import ErrorResponse, SearchResponse
from ..core.errors import (
    EmbeddingProviderError,
    EnrichmentUnavailable,
    MissingQueryText,
    VectorStoreUnavailable,
)
from ..search.pipeline import SearchPipeline

logger = logging.getLogger("post_search.search_routes")

router = APIRouter(tags=["search"])


def _error(status_code: int, message: str, exc: Optional[Exception] = None) -> JSONResponse:
    body = ErrorResponse(message=message, error=str(exc) if exc else None)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
    )


@router.api_route(
    "/search",
    methods=["GET", "POST"],
    response_model=SearchResponse,
    summary="Vector-based semantic search",
    status_code=status.HTTP_200_OK,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def search(
    pipeline: Annotated[SearchPipeline, Depends(get_search_pipeline)],
    text: Annotated[Optional[str], Query()] = None,
):
    """
    Search posts semantically.

    Parameters
    ----------
    text : str
        Natural-language query (query string parameter, required).

    Returns
    -------
    SearchResponse
        Up to ``top_k`` matches, highest similarity first.
    """
    try:
        matches = await pipeline.search(text)
    except MissingQueryText:
        logger.error("missing query string parameter 'text'")
        return _error(
            status.HTTP_400_BAD_REQUEST,
            "Bad request, missing query string parameter 'text'",
        )
    except EmbeddingProviderError as exc:
        logger.error("unable to create embeddings: %s", exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Error creating embeddings", exc)
    except VectorStoreUnavailable as exc:
        logger.error("unable to query index: %s", exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Error querying index", exc)
    except EnrichmentUnavailable:
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Error fetching posts")

    return SearchResponse(matches=matches)
