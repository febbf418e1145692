# campusvote/voting/results.py
"""Per-position results with competition ranking and tie flags.

Candidates with equal votes share a rank (1, 1, 3, 4) and are flagged
``is_tied``. Among equal-vote candidates the listing keeps input order;
that order is presentation only and carries no ranking meaning.

A first-place tie is reported on the position as ``first_place_tie`` for
display. It is never broken automatically; resolving it is left to the
association's own process.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from sqlalchemy import func

from campusvote import db
from campusvote.database.models import Candidate, Election, Position, Vote
from campusvote.exceptions import NotFound


@dataclass(frozen=True)
class RankedCandidate:
    id: str
    name: str
    votes: int
    rank: int
    is_tied: bool
    percentage: float
    photo_url: Optional[str] = None

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'photoUrl': self.photo_url,
            'votes': self.votes,
            'rank': self.rank,
            'isTied': self.is_tied,
            'percentage': self.percentage,
        }


@dataclass
class PositionResult:
    id: str
    name: str
    order: int
    total_votes: int
    candidates: List[RankedCandidate] = field(default_factory=list)

    @property
    def first_place_tie(self) -> bool:
        return sum(1 for c in self.candidates if c.rank == 1) > 1

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'order': self.order,
            'totalVotes': self.total_votes,
            'firstPlaceTie': self.first_place_tie,
            'candidates': [c.to_dict() for c in self.candidates],
        }


@dataclass
class ElectionResults:
    election: Election
    positions: List[PositionResult]

    def to_dict(self):
        return {
            'election': self.election.to_dict(),
            'positions': [p.to_dict() for p in self.positions],
        }


def rank_position(candidates: Sequence[dict]) -> List[RankedCandidate]:
    """Rank ``[{'id', 'votes', 'name'?, 'photo_url'?}]`` for one position."""
    ordered = sorted(candidates, key=lambda c: c['votes'], reverse=True)
    total = sum(c['votes'] for c in ordered)
    occurrences = Counter(c['votes'] for c in ordered)

    ranked = []
    ahead = 0
    previous_votes = None
    for index, candidate in enumerate(ordered):
        votes = candidate['votes']
        if votes != previous_votes:
            ahead = index
            previous_votes = votes
        ranked.append(RankedCandidate(
            id=candidate['id'],
            name=candidate.get('name', ''),
            votes=votes,
            rank=ahead + 1,
            is_tied=occurrences[votes] > 1,
            percentage=(votes / total * 100) if total else 0.0,
            photo_url=candidate.get('photo_url'),
        ))
    return ranked


def tabulate_election(election_id: str) -> ElectionResults:
    election = db.session.get(Election, election_id)
    if election is None:
        raise NotFound('Election not found.')

    vote_counts = dict(
        db.session.query(Vote.candidate_id, func.count(Vote.id))
        .filter(Vote.election_id == election.id)
        .group_by(Vote.candidate_id)
        .all()
    )
    rows = (
        db.session.query(Position, Candidate)
        .join(Candidate, Candidate.position_id == Position.id)
        .filter(
            Position.association_id == election.association_id,
            Candidate.election_id == election.id,
        )
        .order_by(Position.order, Position.name, Candidate.name)
        .all()
    )

    grouped = {}
    positions = []
    for position, candidate in rows:
        if position.id not in grouped:
            grouped[position.id] = []
            positions.append(position)
        grouped[position.id].append({
            'id': candidate.id,
            'name': candidate.name,
            'photo_url': candidate.photo_url,
            'votes': vote_counts.get(candidate.id, 0),
        })

    results = []
    for position in positions:
        ranked = rank_position(grouped[position.id])
        results.append(PositionResult(
            id=position.id,
            name=position.name,
            order=position.order,
            total_votes=sum(c.votes for c in ranked),
            candidates=ranked,
        ))
    return ElectionResults(election=election, positions=results)
