import uuid

import pytest
from qdrant_client import QdrantClient, models

from heritage_rag.retrieval.vector_store import (
    QdrantCandidateSource,
    build_heritage_filter,
    create_candidate_source,
)


@pytest.fixture
def source():
    return QdrantCandidateSource(collection_name="test_docs", client=QdrantClient(":memory:"))


def _point(vector, content, **metadata):
    return {
        "id": str(uuid.uuid4()),
        "vector": vector,
        "payload": {"content": content, **metadata},
    }


def test_search_on_missing_collection_returns_empty(source):
    assert source.search([1.0, 0.0], limit=5) == []


def test_ensure_collection_is_idempotent(source):
    assert source.ensure_collection(2) is True
    assert source.ensure_collection(2) is False
    assert source.collection_exists()
    assert "test_docs" in source.list_collections()


def test_upsert_and_search_return_candidates(source):
    source.ensure_collection(2)
    written = source.upsert([
        _point([1.0, 0.0], "Temple of Literature", title="Temple", heritageId="hn-01"),
        _point([0.0, 1.0], "Hue citadel", title="Citadel", heritageId="hue-01"),
        _point([0.7, 0.7], "Old quarter", title="Quarter", heritageId="hn-01"),
    ])

    assert written == 3
    assert source.count() == 3

    candidates = source.search([1.0, 0.0], limit=2)

    assert [c.content for c in candidates] == ["Temple of Literature", "Old quarter"]
    assert candidates[0].similarity == pytest.approx(1.0)
    assert candidates[0].metadata == {"title": "Temple", "heritageId": "hn-01"}
    assert candidates[0].similarity >= candidates[1].similarity


def test_search_with_heritage_filter(source):
    source.ensure_collection(2)
    source.upsert([
        _point([1.0, 0.0], "Temple of Literature", heritageId="hn-01"),
        _point([0.9, 0.1], "Hue citadel", heritageId="hue-01"),
    ])

    candidates = source.search([1.0, 0.0], limit=5, filter=build_heritage_filter("hue-01"))

    assert [c.content for c in candidates] == ["Hue citadel"]


def test_upsert_accepts_point_structs_in_batches(source):
    source.ensure_collection(2)
    points = [
        models.PointStruct(id=i, vector=[1.0, float(i)], payload={"content": f"chunk {i}"})
        for i in range(1, 6)
    ]

    assert source.upsert(points, batch_size=2) == 5
    assert source.count() == 5


def test_delete_collection(source):
    source.ensure_collection(2)
    assert source.delete_collection() is True
    assert source.delete_collection() is False
    assert not source.collection_exists()


def test_build_heritage_filter_none_for_empty_id():
    assert build_heritage_filter(None) is None
    assert build_heritage_filter("") is None
    condition = build_heritage_filter("hn-01").must[0]
    assert condition.key == "heritageId"
    assert condition.match.value == "hn-01"


def test_create_candidate_source_from_config():
    source = create_candidate_source({"type": "qdrant", "location": ":memory:", "collection_name": "docs"})
    assert isinstance(source, QdrantCandidateSource)
    assert source.collection_name == "docs"

    with pytest.raises(ValueError):
        create_candidate_source({"type": "chroma"})
