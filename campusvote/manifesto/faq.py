# campusvote/manifesto/faq.py

import logging
import time

from sqlalchemy import or_

from campusvote import db
from campusvote.database.models import Candidate, Election, FrequentlyAskedQuestion
from campusvote.exceptions import NotFound

logger = logging.getLogger(__name__)

FREQUENT_QUESTIONS = [
    "What are the candidates' positions on student housing and accommodation?",
    "How do candidates plan to improve campus facilities and infrastructure?",
    "What are their proposals for student financial support and scholarships?",
    "How will they enhance student mental health and wellbeing services?",
    "What are their plans for improving academic support and library services?",
    "How do they plan to increase student engagement and campus activities?",
    "What are their positions on student transportation and parking?",
    "How will they improve communication between students and administration?",
    "What are their plans for sustainability and environmental initiatives?",
    "How will they support international students and diversity initiatives?",
]
MIN_ANSWER_LENGTH = 50


class FAQGenerator:
    """Bulk FAQ cache per election, rebuilt wholesale from FREQUENT_QUESTIONS."""

    def __init__(self, qa, questions=None, pause_seconds=1.0):
        self.qa = qa
        self.questions = list(questions or FREQUENT_QUESTIONS)
        # Spacing between provider calls
        self.pause_seconds = pause_seconds

    def list_faqs(self, election_id):
        return (
            db.session.query(FrequentlyAskedQuestion)
            .filter_by(election_id=election_id, is_active=True)
            .order_by(FrequentlyAskedQuestion.created_at)
            .all()
        )

    def generate(self, election_id) -> int:
        if db.session.get(Election, election_id) is None:
            raise NotFound('Election not found.')
        existing = db.session.query(FrequentlyAskedQuestion.id).filter_by(election_id=election_id).first()
        if existing is not None:
            logger.info("FAQ already exists for election %s; skipping", election_id)
            return 0

        generated = 0
        for number, question in enumerate(self.questions):
            if number and self.pause_seconds:
                time.sleep(self.pause_seconds)
            try:
                result = self.qa.ask(election_id, question)
            except Exception:
                logger.exception("FAQ question failed for election %s: %s", election_id, question)
                continue
            if result.total_sources == 0 or len(result.answer) <= MIN_ANSWER_LENGTH:
                continue
            db.session.add(FrequentlyAskedQuestion(
                election_id=election_id,
                question=question,
                answer=result.answer,
                sources=[s.to_dict() for s in result.sources],
            ))
            db.session.commit()
            generated += 1
            logger.info("Generated FAQ %d/%d for election %s", generated, len(self.questions), election_id)
        return generated

    def regenerate(self, election_id) -> int:
        if db.session.get(Election, election_id) is None:
            raise NotFound('Election not found.')
        deleted = db.session.query(FrequentlyAskedQuestion).filter_by(election_id=election_id).delete()
        db.session.commit()
        logger.info("Deleted %d FAQ entries for election %s", deleted, election_id)
        return self.generate(election_id)

    def generate_for_active_elections(self, force=False):
        """FAQ for every active election whose candidates have manifesto text."""
        elections = (
            db.session.query(Election)
            .join(Candidate, Candidate.election_id == Election.id)
            .filter(
                Election.is_active.is_(True),
                or_(Candidate.manifesto_text.isnot(None), Candidate.manifesto_summary.isnot(None)),
            )
            .distinct()
            .all()
        )
        counts = {}
        for election in elections:
            counts[election.id] = self.regenerate(election.id) if force else self.generate(election.id)
        return counts
