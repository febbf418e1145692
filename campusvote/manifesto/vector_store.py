# campusvote/manifesto/vector_store.py
"""Manifesto chunk index and cosine-similarity search.

Manifestos are split into overlapping chunks, each chunk is embedded and
stored in ``manifesto_chunks`` scoped to (candidate, election). Indexing is
partial-failure tolerant: a chunk whose embedding or insert fails is
recorded in the report and skipped. Search never raises for provider or
vector problems; it degrades to fewer (or zero) results.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
from sqlalchemy.exc import SQLAlchemyError

from campusvote import db
from campusvote.database.models import Candidate, ManifestoChunk
from campusvote.exceptions import ManifestoIndexingError, NotFound, ValidationError
from campusvote.manifesto.chunking import MAX_CHUNKS, prepare_manifesto_text, split_text

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_K = 4


@dataclass(frozen=True)
class ChunkFailure:
    chunk_index: int
    reason: str


@dataclass
class IndexingReport:
    attempted: int = 0
    succeeded: int = 0
    failures: List[ChunkFailure] = field(default_factory=list)

    def to_dict(self):
        return {
            'success': self.succeeded > 0,
            'attempted': self.attempted,
            'chunksAdded': self.succeeded,
            'failures': [{'chunkIndex': f.chunk_index, 'reason': f.reason} for f in self.failures],
        }


@dataclass(frozen=True)
class SearchResult:
    content: str
    metadata: dict
    similarity: float


def cosine_similarity(a: Optional[Sequence[float]], b: Optional[Sequence[float]]) -> float:
    """dot(a, b) / (|a| |b|); 0.0 for missing, empty, mismatched or zero vectors."""
    if a is None or b is None:
        return 0.0
    try:
        va = np.asarray(a, dtype=float)
        vb = np.asarray(b, dtype=float)
    except (TypeError, ValueError):
        return 0.0
    if va.ndim != 1 or va.shape != vb.shape or va.size == 0:
        return 0.0
    denominator = np.linalg.norm(va) * np.linalg.norm(vb)
    if denominator == 0 or not np.isfinite(denominator):
        return 0.0
    similarity = float(np.dot(va, vb) / denominator)
    return similarity if np.isfinite(similarity) else 0.0


class ManifestoVectorStore:
    def __init__(self, embedder):
        self.embedder = embedder

    def add_manifesto(self, candidate_id: str, election_id: str, text: str) -> IndexingReport:
        candidate = self._candidate(candidate_id, election_id)
        chunks = self._chunks(text)
        report = self._index(candidate, election_id, chunks)
        return self._finish(candidate, report)

    def update_manifesto(self, candidate_id: str, election_id: str, text: str) -> IndexingReport:
        """Replace every chunk of the pair; the old index survives a total failure."""
        candidate = self._candidate(candidate_id, election_id)
        chunks = self._chunks(text)
        self._delete_chunks(candidate_id, election_id)
        report = self._index(candidate, election_id, chunks)
        return self._finish(candidate, report)

    def remove_manifesto(self, candidate_id: str, election_id: str) -> int:
        removed = self._delete_chunks(candidate_id, election_id)
        db.session.commit()
        logger.info("Removed %d manifesto chunks for candidate %s", removed, candidate_id)
        return removed

    def search_manifestos(self, election_id: str, query: str, k: int = DEFAULT_SEARCH_K,
                          candidate_ids: Optional[Sequence[str]] = None) -> List[SearchResult]:
        if k <= 0:
            return []
        try:
            query_vector = self.embedder.embed_query(query)
        except Exception as e:
            logger.warning("Query embedding failed for election %s: %s", election_id, e)
            return []

        chunks = db.session.query(ManifestoChunk).filter(ManifestoChunk.election_id == election_id)
        if candidate_ids:
            chunks = chunks.filter(ManifestoChunk.candidate_id.in_(list(candidate_ids)))
        rows = chunks.all()
        if not rows:
            logger.info("No manifesto chunks found for election %s", election_id)
            return []

        results = [
            SearchResult(
                content=row.chunk_text,
                metadata=dict(row.chunk_metadata or {}),
                similarity=cosine_similarity(query_vector, row.embedding),
            )
            for row in rows
        ]
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[:k]

    def _candidate(self, candidate_id, election_id):
        candidate = db.session.get(Candidate, candidate_id)
        if candidate is None or candidate.election_id != election_id:
            raise NotFound('Candidate not found.')
        return candidate

    def _delete_chunks(self, candidate_id, election_id):
        return (
            db.session.query(ManifestoChunk)
            .filter_by(candidate_id=candidate_id, election_id=election_id)
            .delete(synchronize_session=False)
        )

    @staticmethod
    def _chunks(text):
        if not text or not text.strip():
            raise ValidationError('Manifesto text is empty.')
        chunks = split_text(prepare_manifesto_text(text))[:MAX_CHUNKS]
        if not chunks:
            raise ValidationError('No valid chunks created from manifesto text.')
        return chunks

    def _index(self, candidate, election_id, chunks):
        report = IndexingReport(attempted=len(chunks))
        position_name = candidate.position.name if candidate.position else None
        for index, chunk in enumerate(chunks):
            try:
                vector = self.embedder.embed_query(chunk)
            except Exception as e:
                logger.warning("Embedding chunk %d/%d for candidate %s failed: %s",
                               index + 1, len(chunks), candidate.id, e)
                report.failures.append(ChunkFailure(index, 'embedding failed'))
                continue
            try:
                with db.session.begin_nested():
                    db.session.add(ManifestoChunk(
                        election_id=election_id,
                        candidate_id=candidate.id,
                        chunk_text=chunk,
                        embedding=list(vector),
                        chunk_index=index,
                        total_chunks=len(chunks),
                        chunk_metadata={
                            'candidate_id': candidate.id,
                            'election_id': election_id,
                            'candidate_name': candidate.name,
                            'position': position_name,
                            'chunk_index': index,
                            'total_chunks': len(chunks),
                        },
                    ))
            except SQLAlchemyError as e:
                logger.warning("Storing chunk %d for candidate %s failed: %s", index, candidate.id, e)
                report.failures.append(ChunkFailure(index, 'store failed'))
                continue
            report.succeeded += 1
        return report

    def _finish(self, candidate, report):
        if report.succeeded == 0:
            logger.error("Indexing failed for every chunk of candidate %s", candidate.id)
            db.session.rollback()
            raise ManifestoIndexingError(data=report.to_dict())
        db.session.commit()
        logger.info("Indexed %d/%d chunks for candidate %s",
                    report.succeeded, report.attempted, candidate.name)
        return report
