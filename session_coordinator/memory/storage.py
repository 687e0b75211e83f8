"""
Vector index backends.

Provides the per-session collection store used by session memory. The
Qdrant backend works against a Qdrant server or the in-process
``":memory:"`` mode of qdrant-client.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from qdrant_client import AsyncQdrantClient, models
from qdrant_client.http.exceptions import UnexpectedResponse

from ..errors import VectorIndexError


logger = logging.getLogger(__name__)

PointId = Union[int, str]


@dataclass
class IndexPoint:
    """A point returned by the vector index."""

    id: PointId
    score: float = 1.0
    payload: Dict[str, Any] = field(default_factory=dict)


class VectorIndex(ABC):
    """Abstract base class for vector index backends."""

    @abstractmethod
    async def collection_exists(self, name: str) -> bool:
        """Check whether a collection exists."""
        pass

    @abstractmethod
    async def create_collection(self, name: str, dimension: int) -> None:
        """
        Create a collection using cosine distance.

        Args:
            name: Collection name
            dimension: Vector dimension
        """
        pass

    @abstractmethod
    async def ensure_payload_index(self, name: str, field_name: str) -> None:
        """
        Create a keyword payload index; an existing index is not an error.

        Args:
            name: Collection name
            field_name: Payload field to index
        """
        pass

    @abstractmethod
    async def upsert(
        self,
        name: str,
        point_id: PointId,
        vector: List[float],
        payload: Dict[str, Any],
    ) -> None:
        """Insert or replace a single point."""
        pass

    @abstractmethod
    async def search(
        self,
        name: str,
        vector: List[float],
        limit: int,
        filter_by: Optional[Dict[str, str]] = None,
    ) -> List[IndexPoint]:
        """
        Nearest-neighbor search.

        Args:
            name: Collection name
            vector: Query vector
            limit: Maximum results
            filter_by: Optional exact-match payload filter

        Returns:
            Points ordered by descending similarity
        """
        pass

    @abstractmethod
    async def scroll(
        self,
        name: str,
        filter_by: Dict[str, str],
        limit: int,
    ) -> List[IndexPoint]:
        """Exact retrieval of points matching a payload filter, unranked."""
        pass

    @abstractmethod
    async def scroll_all(
        self,
        name: str,
        filter_by: Dict[str, str],
        page_size: int = 100,
    ) -> List[IndexPoint]:
        """Every point matching a payload filter, fetched page by page."""
        pass

    @abstractmethod
    async def count(self, name: str) -> int:
        """Number of points in a collection."""
        pass

    @abstractmethod
    async def delete_collection(self, name: str) -> None:
        """Delete a collection; a missing collection is not an error."""
        pass

    async def close(self) -> None:
        """Release client resources."""
        pass


def _match_filter(filter_by: Optional[Dict[str, str]]) -> Optional[models.Filter]:
    """Build a Qdrant filter requiring every key to match its value."""
    if not filter_by:
        return None
    return models.Filter(
        must=[
            models.FieldCondition(key=key, match=models.MatchValue(value=value))
            for key, value in filter_by.items()
        ]
    )


def _is_not_found(error: Exception) -> bool:
    """Whether an error means the collection does not exist."""
    if isinstance(error, UnexpectedResponse) and error.status_code == 404:
        return True
    return "not found" in str(error).lower()


class QdrantVectorIndex(VectorIndex):
    """
    Qdrant-backed vector index.

    Uses ``AsyncQdrantClient``; every client failure is wrapped in
    ``VectorIndexError``.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: int = 30,
        client: Optional[AsyncQdrantClient] = None,
    ):
        """
        Initialize the Qdrant index.

        Args:
            url: Qdrant URL, or ":memory:" for the in-process mode
            api_key: Qdrant Cloud API key
            timeout: Request timeout in seconds
            client: Pre-built client (overrides url/api_key)
        """
        self.url = url
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    def _get_client(self) -> AsyncQdrantClient:
        """Get or create the async Qdrant client."""
        if self._client is None:
            if self.url == ":memory:":
                self._client = AsyncQdrantClient(location=":memory:")
            else:
                self._client = AsyncQdrantClient(
                    url=self.url,
                    api_key=self._api_key,
                    timeout=self._timeout,
                )
            logger.debug(f"Qdrant client initialized: url={self.url}")
        return self._client

    async def collection_exists(self, name: str) -> bool:
        try:
            return await self._get_client().collection_exists(collection_name=name)
        except Exception as e:
            raise VectorIndexError(f"Failed to check collection {name}: {e}", cause=e) from e

    async def create_collection(self, name: str, dimension: int) -> None:
        try:
            await self._get_client().create_collection(
                collection_name=name,
                vectors_config=models.VectorParams(
                    size=dimension,
                    distance=models.Distance.COSINE,
                ),
            )
        except Exception as e:
            raise VectorIndexError(f"Failed to create collection {name}: {e}", cause=e) from e
        logger.info(f"Collection created: {name}")

    async def ensure_payload_index(self, name: str, field_name: str) -> None:
        try:
            await self._get_client().create_payload_index(
                collection_name=name,
                field_name=field_name,
                field_schema=models.PayloadSchemaType.KEYWORD,
            )
        except Exception as e:
            if "already exists" in str(e).lower():
                logger.debug(f"Payload index on '{field_name}' already exists")
                return
            raise VectorIndexError(
                f"Failed to create payload index on {field_name}: {e}", cause=e
            ) from e

    async def upsert(
        self,
        name: str,
        point_id: PointId,
        vector: List[float],
        payload: Dict[str, Any],
    ) -> None:
        try:
            await self._get_client().upsert(
                collection_name=name,
                points=[models.PointStruct(id=point_id, vector=vector, payload=payload)],
                wait=True,
            )
        except Exception as e:
            raise VectorIndexError(f"Failed to upsert point: {e}", cause=e) from e

    async def search(
        self,
        name: str,
        vector: List[float],
        limit: int,
        filter_by: Optional[Dict[str, str]] = None,
    ) -> List[IndexPoint]:
        try:
            response = await self._get_client().query_points(
                collection_name=name,
                query=vector,
                limit=limit,
                query_filter=_match_filter(filter_by),
                with_payload=True,
            )
        except Exception as e:
            raise VectorIndexError(f"Failed to search vectors: {e}", cause=e) from e

        return [
            IndexPoint(id=hit.id, score=hit.score or 0.0, payload=hit.payload or {})
            for hit in response.points
        ]

    async def scroll(
        self,
        name: str,
        filter_by: Dict[str, str],
        limit: int,
    ) -> List[IndexPoint]:
        try:
            points, _next_offset = await self._get_client().scroll(
                collection_name=name,
                scroll_filter=_match_filter(filter_by),
                limit=limit,
                with_payload=True,
                with_vectors=False,
            )
        except Exception as e:
            raise VectorIndexError(f"Failed to scroll points: {e}", cause=e) from e

        return [IndexPoint(id=point.id, payload=point.payload or {}) for point in points]

    async def scroll_all(
        self,
        name: str,
        filter_by: Dict[str, str],
        page_size: int = 100,
    ) -> List[IndexPoint]:
        results: List[IndexPoint] = []
        offset = None

        while True:
            try:
                points, offset = await self._get_client().scroll(
                    collection_name=name,
                    scroll_filter=_match_filter(filter_by),
                    limit=page_size,
                    offset=offset,
                    with_payload=True,
                    with_vectors=False,
                )
            except Exception as e:
                raise VectorIndexError(f"Failed to scroll points: {e}", cause=e) from e

            results.extend(IndexPoint(id=point.id, payload=point.payload or {}) for point in points)
            if offset is None:
                return results

    async def count(self, name: str) -> int:
        try:
            result = await self._get_client().count(collection_name=name, exact=True)
        except Exception as e:
            raise VectorIndexError(f"Failed to count points: {e}", cause=e) from e
        return result.count

    async def delete_collection(self, name: str) -> None:
        try:
            await self._get_client().delete_collection(collection_name=name)
        except Exception as e:
            if _is_not_found(e):
                logger.info(f"Session collection already removed: {name}")
                return
            raise VectorIndexError(f"Failed to delete collection {name}: {e}", cause=e) from e
        logger.info(f"Deleted collection: {name}")

    async def close(self) -> None:
        """Close the underlying client."""
        if self._client is not None:
            await self._client.close()
            self._client = None
