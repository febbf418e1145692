# campusvote/manifesto/qa.py

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from campusvote import db
from campusvote.exceptions import AIServiceError, ValidationError

logger = logging.getLogger(__name__)

INSUFFICIENT_INFORMATION_ANSWER = (
    "I don't have enough information about the candidates' manifestos to answer that "
    "question. Please ensure manifestos have been uploaded and processed."
)
QA_SEARCH_K = 6
SOURCE_PREVIEW_CHARS = 300
SUMMARY_MIN_TEXT = 100
SUMMARY_MAX_PROMPT_TEXT = 4000
SUMMARY_MIN_LENGTH = 50

QA_PROMPT = """Based on the following manifesto excerpts, provide a comprehensive answer to this question: "{question}"

Context from candidates' manifestos:
{context}

Instructions:
- Provide a detailed and accurate answer based only on the information provided
- Quote specific commitments or policies when relevant
- Mention which specific candidate(s) address the topic and how
- If comparing candidates, highlight key differences in their approaches
- If the information is insufficient for any aspect, state this clearly
- Keep the answer informative but well-structured

Answer:"""

SUMMARY_PROMPT = """Create a comprehensive summary of this candidate's manifesto. Go straight to the point, no preamble. Focus on:
1. Main policy priorities and promises
2. Key initiatives and programs proposed
3. Vision and goals for the position
4. Specific commitments made to voters

Candidate: {name}

Manifesto:
{text}

Summary (3-4 paragraphs, approximately 200-300 words):"""


@dataclass(frozen=True)
class QASource:
    candidate_id: str
    candidate_name: str
    position: str
    content: str
    similarity: float

    def to_dict(self):
        return {
            'candidateId': self.candidate_id,
            'candidateName': self.candidate_name,
            'position': self.position,
            'content': self.content,
            'similarity': self.similarity,
        }


@dataclass
class QAAnswer:
    answer: str
    sources: List[QASource] = field(default_factory=list)

    @property
    def total_sources(self) -> int:
        return len(self.sources)

    def to_dict(self):
        return {
            'answer': self.answer,
            'sources': [s.to_dict() for s in self.sources],
            'totalSources': self.total_sources,
        }


def insufficient_information() -> QAAnswer:
    return QAAnswer(answer=INSUFFICIENT_INFORMATION_ANSWER, sources=[])


class ManifestoQA:
    """Retrieval-augmented answers over an election's manifestos."""

    def __init__(self, store, llm):
        self.store = store
        self.llm = llm

    def ask(self, election_id: str, question: str,
            candidate_ids: Optional[Sequence[str]] = None, k: int = QA_SEARCH_K) -> QAAnswer:
        results = self.store.search_manifestos(election_id, question, k=k, candidate_ids=candidate_ids)
        if not results:
            return insufficient_information()

        context = '\n\n'.join(
            f"**{r.metadata.get('candidate_name')} ({r.metadata.get('position')})**: {r.content}"
            for r in results
        )
        try:
            answer = self.llm.complete(QA_PROMPT.format(question=question, context=context))
        except AIServiceError as e:
            logger.warning("Answer generation failed for election %s: %s", election_id, e)
            return insufficient_information()
        if not answer:
            return insufficient_information()

        return QAAnswer(
            answer=answer,
            sources=[
                QASource(
                    candidate_id=r.metadata.get('candidate_id'),
                    candidate_name=r.metadata.get('candidate_name'),
                    position=r.metadata.get('position'),
                    content=r.content[:SOURCE_PREVIEW_CHARS] + '...',
                    similarity=r.similarity,
                )
                for r in results
            ],
        )

    def summarize(self, candidate) -> str:
        """Generate and store ``candidate.manifesto_summary``."""
        text = (candidate.manifesto_text or '').strip()
        if len(text) < SUMMARY_MIN_TEXT:
            raise ValidationError('Manifesto text too short for meaningful summary.')

        excerpt = text[:SUMMARY_MAX_PROMPT_TEXT]
        if len(text) > SUMMARY_MAX_PROMPT_TEXT:
            excerpt += ' ...'
        summary = self.llm.complete(SUMMARY_PROMPT.format(name=candidate.name, text=excerpt))
        if not summary or len(summary) < SUMMARY_MIN_LENGTH:
            raise AIServiceError('Generated summary is too short')

        candidate.manifesto_summary = summary
        db.session.commit()
        return summary
