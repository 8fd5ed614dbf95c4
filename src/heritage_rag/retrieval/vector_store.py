"""heritage_rag.retrieval.vector_store

Candidate source interfaces and factories for the retrieval layer.

This module defines a small wrapper interface around the vector index and a
concrete implementation backed by Qdrant. The main responsibilities are:
- creating collections and upserting embedded chunks with their payload
- running similarity searches and returning
  :class:`~heritage_rag.common.schemas.Candidate` objects

Classes
-------
BaseCandidateSource
    Abstract interface for vector index wrappers.
QdrantCandidateSource
    Qdrant-backed candidate source.

Functions
---------
build_heritage_filter
    Build a Qdrant filter restricting results to one heritage site.
create_candidate_source
    Create a candidate source implementation from a configuration mapping.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Sequence

from qdrant_client import QdrantClient, models

from heritage_rag.common.kinds import get_kind, normalise_kind
from heritage_rag.common.schemas import Candidate

logger = logging.getLogger("heritage_rag.vector_store")

HERITAGE_ID_FIELD = "heritageId"
DEFAULT_UPSERT_BATCH_SIZE = 100


def build_heritage_filter(heritage_id: str | None) -> models.Filter | None:
    """Return a filter matching ``heritageId == heritage_id``, or ``None``."""
    if not heritage_id:
        return None
    return models.Filter(
        must=[
            models.FieldCondition(
                key=HERITAGE_ID_FIELD,
                match=models.MatchValue(value=heritage_id),
            )
        ]
    )


class BaseCandidateSource(ABC):
    """Abstract interface for the vector index.

    Concrete implementations store embedded chunks and return the nearest
    stored chunks for a query vector.
    """

    @abstractmethod
    def ensure_collection(self, vector_size: int, collection_name: str | None = None) -> bool:
        """Create the collection if missing. Returns ``True`` when it was created."""

    @abstractmethod
    def upsert(
            self,
            points: Sequence[models.PointStruct | Mapping[str, Any]],
            batch_size: int = DEFAULT_UPSERT_BATCH_SIZE,
            collection_name: str | None = None,
        ) -> int:
        """Insert or replace ``points``. Returns the number of points written."""

    @abstractmethod
    def search(
            self,
            vector: Sequence[float],
            limit: int,
            filter: Any = None,
            collection_name: str | None = None,
        ) -> list[Candidate]:
        """Return up to ``limit`` nearest candidates, best first."""

    @classmethod
    @abstractmethod
    def from_config_dict(cls, config: dict) -> "BaseCandidateSource":
        """Create a candidate source from a configuration mapping."""


class QdrantCandidateSource(BaseCandidateSource):
    """Qdrant-backed candidate source.

    Points are stored with cosine distance and a payload of the chunk
    content plus its metadata. Qdrant reports cosine similarity directly, so
    the returned score becomes :attr:`Candidate.similarity`.

    Parameters
    ----------
    host : str, optional
        Qdrant host address. Defaults to ``"localhost"``.
    port : int, optional
        Qdrant port number. Defaults to ``6333``.
    url : str, optional
        Full Qdrant URL. Takes precedence over ``host``/``port``.
    api_key : str, optional
        Qdrant API key.
    collection_name : str, optional
        Default collection. Defaults to ``"heritage_documents"``.
    client : QdrantClient, optional
        Pre-built client (e.g. ``QdrantClient(":memory:")``).
    """

    def __init__(
            self,
            *,
            host: str = "localhost",
            port: int = 6333,
            url: Optional[str] = None,
            api_key: Optional[str] = None,
            collection_name: str = "heritage_documents",
            client: QdrantClient | None = None,
        ):
        if client is None:
            if url:
                client = QdrantClient(url=url, api_key=api_key)
            else:
                client = QdrantClient(host=host, port=port, api_key=api_key)
        self.client = client
        self.collection_name = collection_name

    @classmethod
    def from_config_dict(cls, config: dict, client: QdrantClient | None = None) -> "QdrantCandidateSource":
        """Create a QdrantCandidateSource from a configuration mapping.

        Parameters
        ----------
        config : dict
            Configuration mapping. Recognised keys are ``host``, ``port``,
            ``url``, ``api_key`` and ``collection_name``. ``location: ":memory:"``
            creates an in-process store.
        client : QdrantClient, optional
            Pre-built client overriding the connection keys.
        """
        if client is None and config.get("location"):
            client = QdrantClient(location=config["location"])
        return cls(
            host=config.get("host", "localhost"),
            port=int(config.get("port", 6333)),
            url=config.get("url"),
            api_key=config.get("api_key"),
            collection_name=config.get("collection_name", "heritage_documents"),
            client=client,
        )

    def _name(self, collection_name: str | None) -> str:
        return collection_name or self.collection_name

    def collection_exists(self, collection_name: str | None = None) -> bool:
        return self.client.collection_exists(self._name(collection_name))

    def ensure_collection(self, vector_size: int, collection_name: str | None = None) -> bool:
        """Create the collection with cosine distance if it does not exist.

        A keyword payload index on ``heritageId`` is created alongside; failing
        to create it only logs a warning.

        Returns
        -------
        bool
            ``True`` if the collection was created by this call.
        """
        name = self._name(collection_name)
        if self.client.collection_exists(name):
            return False

        logger.info("Creating collection %s (size=%d, distance=cosine)", name, vector_size)
        self.client.create_collection(
            collection_name=name,
            vectors_config=models.VectorParams(size=vector_size, distance=models.Distance.COSINE),
        )
        try:
            self.client.create_payload_index(
                collection_name=name,
                field_name=HERITAGE_ID_FIELD,
                field_schema=models.PayloadSchemaType.KEYWORD,
            )
        except Exception as exc:
            logger.warning("Could not create %s payload index on %s: %s", HERITAGE_ID_FIELD, name, exc)
        return True

    @staticmethod
    def _to_point(point: models.PointStruct | Mapping[str, Any]) -> models.PointStruct:
        if isinstance(point, models.PointStruct):
            return point
        return models.PointStruct(
            id=point["id"],
            vector=list(point["vector"]),
            payload=dict(point.get("payload") or {}),
        )

    def upsert(
            self,
            points: Sequence[models.PointStruct | Mapping[str, Any]],
            batch_size: int = DEFAULT_UPSERT_BATCH_SIZE,
            collection_name: str | None = None,
        ) -> int:
        """Upsert ``points`` in batches of ``batch_size``, waiting for each write."""
        name = self._name(collection_name)
        structs = [self._to_point(p) for p in points]
        for start in range(0, len(structs), batch_size):
            batch = structs[start:start + batch_size]
            self.client.upsert(collection_name=name, points=batch, wait=True)
            logger.debug("Upserted %d points into %s", len(batch), name)
        logger.info("Stored %d points in %s", len(structs), name)
        return len(structs)

    def search(
            self,
            vector: Sequence[float],
            limit: int,
            filter: models.Filter | None = None,
            collection_name: str | None = None,
        ) -> list[Candidate]:
        """Return up to ``limit`` candidates, highest similarity first.

        An unknown collection yields an empty list.
        """
        name = self._name(collection_name)
        if not self.client.collection_exists(name):
            logger.warning("Collection %s does not exist", name)
            return []

        points = self.client.query_points(
            collection_name=name,
            query=list(vector),
            limit=limit,
            query_filter=filter,
            with_payload=True,
        ).points

        candidates = []
        for point in points:
            payload = dict(point.payload or {})
            content = payload.pop("content", "")
            candidates.append(
                Candidate(
                    id=str(point.id),
                    content=content if isinstance(content, str) else str(content),
                    metadata=payload,
                    similarity=float(point.score),
                )
            )
        return candidates

    def count(self, collection_name: str | None = None) -> int:
        return self.client.count(collection_name=self._name(collection_name), exact=True).count

    def delete_collection(self, collection_name: str | None = None) -> bool:
        name = self._name(collection_name)
        if not self.client.collection_exists(name):
            return False
        self.client.delete_collection(collection_name=name)
        logger.info("Deleted collection %s", name)
        return True

    def list_collections(self) -> list[str]:
        return [c.name for c in self.client.get_collections().collections]


_SOURCE_ALIASES = {
    "qdrant_candidate_source": "qdrant",
    "qdrantcandidatesource": "qdrant",
    "qdrant_client": "qdrant",
}


def create_candidate_source(config: dict, client: QdrantClient | None = None) -> BaseCandidateSource:
    """Create a candidate source implementation from a configuration mapping.

    Qdrant is the only backend; a section without a discriminator selects it.

    Parameters
    ----------
    config : dict
        The ``vector_store`` configuration section.
    client : QdrantClient, optional
        Pre-built client.

    Raises
    ------
    ValueError
        If the requested backend kind is not supported.
    """
    requested = get_kind(config)
    kind = normalise_kind(requested, _SOURCE_ALIASES) if requested else "qdrant"
    if kind == "qdrant":
        return QdrantCandidateSource.from_config_dict(config, client=client)
    raise ValueError(f"Unsupported vector store {requested!r}; only 'qdrant' is available")


__all__ = [
    "HERITAGE_ID_FIELD",
    "BaseCandidateSource",
    "QdrantCandidateSource",
    "build_heritage_filter",
    "create_candidate_source",
]
