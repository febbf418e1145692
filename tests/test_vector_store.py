# tests/test_vector_store.py
import math

import pytest

from campusvote import db
from campusvote.database.models import Candidate, ManifestoChunk
from campusvote.exceptions import ManifestoIndexingError, NotFound, ValidationError
from campusvote.manifesto.vector_store import cosine_similarity

HOUSING = (
    "Housing first. I will campaign for a new hostel on the north campus and cap "
    "hostel fees for first year students. Housing allocation will be published online. "
) * 12
LIBRARY = (
    "The library deserves better. I will extend library hours, expand library wifi "
    "and add quiet study rooms to the library annex. "
) * 12


def _chunk_count(app, **filters):
    with app.app_context():
        return db.session.query(ManifestoChunk).filter_by(**filters).count()


def test_cosine_similarity_bounds_and_symmetry():
    a, b = [1.0, 2.0, 3.0], [-2.0, 0.5, 4.0]
    assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))
    assert -1.0 <= cosine_similarity(a, b) <= 1.0
    assert cosine_similarity(a, a) == pytest.approx(1.0)
    assert cosine_similarity(a, [-x for x in a]) == pytest.approx(-1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)


@pytest.mark.parametrize("a,b", [
    (None, [1.0]),
    ([], []),
    ([1.0, 2.0], [1.0]),
    ([0.0, 0.0], [1.0, 1.0]),
    ([1.0, math.nan], [1.0, 1.0]),
    (["x"], [1.0]),
])
def test_cosine_similarity_degenerate_inputs(a, b):
    assert cosine_similarity(a, b) == 0.0


def test_add_manifesto_stores_chunks_with_metadata(app, services, seed):
    with app.app_context():
        report = services.vector_store.add_manifesto(seed.ada_id, seed.election_id, HOUSING)
        chunks = db.session.query(ManifestoChunk).filter_by(candidate_id=seed.ada_id).all()

        assert report.succeeded == report.attempted == len(chunks) > 1
        assert report.failures == []
        metadata = chunks[0].chunk_metadata
        assert metadata["candidate_name"] == "Ada Obi"
        assert metadata["position"] == "President"
        assert metadata["election_id"] == seed.election_id
        assert metadata["total_chunks"] == len(chunks)


def test_partial_embedding_failure_is_reported(app, services, seed, embedder):
    text = HOUSING[:600] + " provider-glitch " + HOUSING[600:]
    embedder.fail_on = ["provider-glitch"]
    with app.app_context():
        report = services.vector_store.add_manifesto(seed.ada_id, seed.election_id, text)

    assert report.failures
    assert report.succeeded == report.attempted - len(report.failures) > 0
    assert all(f.reason == "embedding failed" for f in report.failures)
    assert _chunk_count(app, candidate_id=seed.ada_id) == report.succeeded


def test_total_embedding_failure_raises(app, services, seed, embedder):
    embedder.fail_on = ["Housing"]
    with app.app_context():
        with pytest.raises(ManifestoIndexingError) as excinfo:
            services.vector_store.add_manifesto(seed.ada_id, seed.election_id, "Housing " * 50)
    assert excinfo.value.data["chunksAdded"] == 0
    assert _chunk_count(app, candidate_id=seed.ada_id) == 0


def test_add_manifesto_validates_input(app, services, seed):
    with app.app_context():
        with pytest.raises(NotFound):
            services.vector_store.add_manifesto("nobody", seed.election_id, HOUSING)
        with pytest.raises(NotFound):
            services.vector_store.add_manifesto(seed.ada_id, "other-election", HOUSING)
        with pytest.raises(ValidationError):
            services.vector_store.add_manifesto(seed.ada_id, seed.election_id, "   ")


def test_update_replaces_existing_chunks(app, services, seed):
    with app.app_context():
        services.vector_store.add_manifesto(seed.ada_id, seed.election_id, HOUSING)
    with app.app_context():
        report = services.vector_store.update_manifesto(seed.ada_id, seed.election_id, LIBRARY)
        texts = [c.chunk_text for c in db.session.query(ManifestoChunk).filter_by(candidate_id=seed.ada_id)]

    assert len(texts) == report.succeeded
    assert all("library" in t for t in texts)
    assert not any("hostel" in t for t in texts)


def test_failed_update_keeps_previous_index(app, services, seed, embedder):
    with app.app_context():
        services.vector_store.add_manifesto(seed.ada_id, seed.election_id, HOUSING)
    before = _chunk_count(app, candidate_id=seed.ada_id)

    embedder.fail_on = ["library"]
    with app.app_context():
        with pytest.raises(ManifestoIndexingError):
            services.vector_store.update_manifesto(seed.ada_id, seed.election_id, LIBRARY)
    assert _chunk_count(app, candidate_id=seed.ada_id) == before


def test_remove_manifesto(app, services, seed):
    with app.app_context():
        services.vector_store.add_manifesto(seed.ada_id, seed.election_id, HOUSING)
        services.vector_store.add_manifesto(seed.ben_id, seed.election_id, LIBRARY)
    with app.app_context():
        removed = services.vector_store.remove_manifesto(seed.ada_id, seed.election_id)
    assert removed > 0
    assert _chunk_count(app, candidate_id=seed.ada_id) == 0
    assert _chunk_count(app, candidate_id=seed.ben_id) > 0
    with app.app_context():
        assert services.vector_store.remove_manifesto(seed.ada_id, seed.election_id) == 0


def test_search_ranks_relevant_manifesto_first(app, services, seed):
    with app.app_context():
        services.vector_store.add_manifesto(seed.ada_id, seed.election_id, HOUSING)
        services.vector_store.add_manifesto(seed.ben_id, seed.election_id, LIBRARY)
    with app.app_context():
        results = services.vector_store.search_manifestos(seed.election_id, "What about the library?", k=3)

    assert len(results) == 3
    assert results[0].metadata["candidate_name"] == "Ben Eze"
    similarities = [r.similarity for r in results]
    assert similarities == sorted(similarities, reverse=True)


def test_search_filters_candidates_and_respects_k(app, services, seed):
    with app.app_context():
        services.vector_store.add_manifesto(seed.ada_id, seed.election_id, HOUSING)
        services.vector_store.add_manifesto(seed.ben_id, seed.election_id, LIBRARY)
    with app.app_context():
        results = services.vector_store.search_manifestos(
            seed.election_id, "library", k=50, candidate_ids=[seed.ada_id]
        )
        assert results
        assert {r.metadata["candidate_id"] for r in results} == {seed.ada_id}
        assert services.vector_store.search_manifestos(seed.election_id, "library", k=0) == []


def test_search_degrades_when_embedding_fails(app, services, seed, embedder):
    with app.app_context():
        services.vector_store.add_manifesto(seed.ada_id, seed.election_id, HOUSING)
    embedder.fail_on = ["timeout"]
    with app.app_context():
        assert services.vector_store.search_manifestos(seed.election_id, "timeout please") == []


def test_search_empty_election(app, services, seed):
    with app.app_context():
        assert services.vector_store.search_manifestos(seed.election_id, "housing") == []


def test_deleting_election_removes_chunks(app, services, seed):
    with app.app_context():
        services.vector_store.add_manifesto(seed.ada_id, seed.election_id, HOUSING)
        candidate = db.session.get(Candidate, seed.ada_id)
        db.session.delete(candidate.election)
        db.session.commit()
    assert _chunk_count(app, election_id=seed.election_id) == 0
