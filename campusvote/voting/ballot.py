# campusvote/voting/ballot.py
"""Ballot casting with one-ballot-per-voter integrity.

``BallotService.cast_ballot`` either commits a complete, consistent ballot
exactly once or rejects it with no side effects. Preconditions are checked
in a fixed order and short-circuit on the first failure:

1. the voter exists                                    -> NotFound
2. the voter has not voted                             -> AlreadyVoted
3. the election belongs to the voter's association,
   is active and ``start_at <= now <= end_at``         -> ElectionUnavailable
4. at least one selection, one per position            -> ValidationError
5. each candidate matches its election and position    -> InvalidSelection
6. every contested position is covered (optional)      -> ValidationError

The commit is a single transaction: a compare-and-set on ``has_voted`` plus
one Vote row per selection. Losing the compare-and-set to a concurrent
request means the voter already voted. The session is revoked after a
successful commit and after every "already voted" rejection.
"""

import hashlib
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from campusvote import db
from campusvote.database.models import Candidate, Election, Position, Vote, Voter, utcnow
from campusvote.exceptions import (
    AlreadyVoted,
    BallotCommitError,
    ElectionUnavailable,
    InvalidSelection,
    NotFound,
    ValidationError,
    VotingError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Selection:
    position_id: str
    candidate_id: str


@dataclass(frozen=True)
class BallotReceipt:
    election_id: str
    voted_at: datetime
    votes_cast: int

    def to_dict(self):
        return {
            'electionId': self.election_id,
            'votedAt': self.voted_at.isoformat() + 'Z',
            'votesCast': self.votes_cast,
        }


def voter_reference(voter_id: str) -> str:
    # Audit entries reference voters without storing their identifier
    return hashlib.sha256(voter_id.encode()).hexdigest()[:16]


class BallotService:
    def __init__(self, sessions, audit_logger=None, require_complete_ballot=True):
        self.sessions = sessions
        self.audit_logger = audit_logger
        self.require_complete_ballot = require_complete_ballot

    # ------------------------------------------------------------------ reads

    def open_election(self, session, election_id: str, now: datetime) -> Election:
        election = (
            db.session.query(Election)
            .filter(
                Election.id == election_id,
                Election.association_id == session.association_id,
                Election.is_active.is_(True),
                Election.start_at <= now,
                Election.end_at >= now,
            )
            .first()
        )
        if election is None:
            raise ElectionUnavailable()
        return election

    def active_elections(self, session, now: Optional[datetime] = None) -> List[Election]:
        now = now or utcnow()
        return (
            db.session.query(Election)
            .filter(
                Election.association_id == session.association_id,
                Election.is_active.is_(True),
                Election.start_at <= now,
                Election.end_at >= now,
            )
            .order_by(Election.start_at)
            .all()
        )

    def get_ballot(self, session, election_id: str, now: Optional[datetime] = None) -> list:
        """Positions (by display order) with this election's candidates (by name).

        Positions without candidates in the election are left out.
        """
        election = self.open_election(session, election_id, now or utcnow())
        rows = (
            db.session.query(Position, Candidate)
            .join(Candidate, Candidate.position_id == Position.id)
            .filter(
                Position.association_id == session.association_id,
                Candidate.election_id == election.id,
            )
            .order_by(Position.order, Position.name, Candidate.name)
            .all()
        )
        positions = []
        by_id = {}
        for position, candidate in rows:
            entry = by_id.get(position.id)
            if entry is None:
                entry = {
                    'id': position.id,
                    'name': position.name,
                    'order': position.order,
                    'maxCandidates': position.max_candidates,
                    'candidates': [],
                }
                by_id[position.id] = entry
                positions.append(entry)
            entry['candidates'].append(candidate.to_ballot_dict())
        return positions

    # ------------------------------------------------------------------ write

    def cast_ballot(self, session, election_id: str, selections: Iterable,
                    now: Optional[datetime] = None) -> BallotReceipt:
        now = now or utcnow()
        selections = [self._as_selection(s) for s in selections]

        try:
            self._check_preconditions(session, election_id, selections, now)
        except AlreadyVoted:
            db.session.rollback()
            self._audit('duplicate_vote_attempt', session, {'election_id': election_id})
            self.sessions.revoke(session)
            raise
        except VotingError:
            db.session.rollback()
            raise

        if not self._commit(session, election_id, selections, now):
            self._audit('duplicate_vote_attempt', session, {'election_id': election_id})
            self.sessions.revoke(session)
            raise AlreadyVoted()

        self.sessions.revoke(session)
        self._audit('vote_cast', session, {'election_id': election_id, 'votes': len(selections)})
        logger.info("Ballot committed for election %s (%d selections)", election_id, len(selections))
        return BallotReceipt(election_id=election_id, voted_at=now, votes_cast=len(selections))

    def _check_preconditions(self, session, election_id, selections, now):
        voter = db.session.get(Voter, session.voter_id)
        if voter is None:
            raise NotFound('Voter not found.')
        if voter.has_voted:
            raise AlreadyVoted()

        election = self.open_election(session, election_id, now)

        if not selections:
            raise ValidationError('At least one vote is required.')
        seen_positions = set()
        for selection in selections:
            if selection.position_id in seen_positions:
                raise ValidationError('Only one candidate may be selected for each position.')
            seen_positions.add(selection.position_id)

        for selection in selections:
            candidate = (
                db.session.query(Candidate.id)
                .filter_by(
                    id=selection.candidate_id,
                    election_id=election.id,
                    position_id=selection.position_id,
                )
                .first()
            )
            if candidate is None:
                self._audit('invalid_selection', session, {
                    'election_id': election.id,
                    'position_id': selection.position_id,
                    'candidate_id': selection.candidate_id,
                })
                raise InvalidSelection()

        if self.require_complete_ballot:
            contested = {
                row.position_id
                for row in db.session.query(Candidate.position_id).filter_by(election_id=election.id).distinct()
            }
            if contested - seen_positions:
                raise ValidationError('Please select a candidate for every position.')

    def _commit(self, session, election_id, selections, now) -> bool:
        """Apply the ballot atomically; False when the voter was marked voted first."""
        try:
            claimed = db.session.execute(
                update(Voter)
                .where(Voter.id == session.voter_id, Voter.has_voted.is_(False))
                .values(has_voted=True, voted_at=now)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                db.session.rollback()
                return False
            db.session.add_all([
                Vote(voter_id=session.voter_id, election_id=election_id,
                     candidate_id=selection.candidate_id, created_at=now)
                for selection in selections
            ])
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error("Ballot commit for election %s rolled back: %s", election_id, e)
            raise BallotCommitError() from e
        return True

    @staticmethod
    def _as_selection(value) -> Selection:
        if isinstance(value, Selection):
            return value
        if isinstance(value, dict):
            return Selection(position_id=value['positionId'], candidate_id=value['candidateId'])
        position_id, candidate_id = value
        return Selection(position_id=position_id, candidate_id=candidate_id)

    def _audit(self, event_type, session, data):
        if self.audit_logger is None:
            return
        data = dict(data, voter_ref=voter_reference(session.voter_id))
        self.audit_logger.log_event(event_type, data)
