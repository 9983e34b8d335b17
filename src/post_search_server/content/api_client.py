"""
Content API Client

Fetches human-readable post summaries from the blogging platform's GraphQL
API. Used by the query pipeline to enrich vector hits.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..core.errors import DocumentFetchError

logger = logging.getLogger("post_search.content")


POST_SUMMARY_QUERY = """
query Post($id: ID!) {
  post(id: $id) {
    id
    author {
      username
      name
    }
    title
    brief
  }
}
"""


class ContentApiClient:
    def __init__(
        self,
        base_url: str = "https://gql.hashnode.com",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url
        self.timeout = timeout
        self._transport = transport

    async def _request(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a GraphQL operation and return its ``data`` object.

        Raises DocumentFetchError on transport failure or GraphQL errors.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                resp = await client.post(
                    self.base_url,
                    json={"query": query, "variables": variables},
                )
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as exc:
            raise DocumentFetchError(
                f"Content API request failed: {type(exc).__name__}"
            ) from exc
        except ValueError as exc:
            raise DocumentFetchError("Content API returned invalid JSON") from exc

        if not isinstance(body, dict):
            raise DocumentFetchError("Content API returned a non-object body")

        if body.get("errors"):
            messages = [e.get("message", "?") for e in body["errors"] if isinstance(e, dict)]
            raise DocumentFetchError(f"Content API errors: {'; '.join(messages)}")

        data = body.get("data")
        if not isinstance(data, dict):
            raise DocumentFetchError("Content API response missing 'data'")
        return data

    async def get_post_summary(self, post_id: str) -> Dict[str, Any]:
        """
        Return ``{id, author: {username, name}, title, brief}`` for a post.
        """
        data = await self._request(POST_SUMMARY_QUERY, {"id": post_id})
        post = data.get("post")
        if not post:
            raise DocumentFetchError(f"Post {post_id!r} not found")
        return post
