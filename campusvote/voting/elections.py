# campusvote/voting/elections.py

import logging

from sqlalchemy.exc import IntegrityError

from campusvote import db
from campusvote.database.models import Candidate, Election, ManifestoChunk, Position, Vote, utcnow
from campusvote.exceptions import Conflict, NotFound, ValidationError

# Administrator writes: elections, positions and candidates of one association

logger = logging.getLogger(__name__)

ELECTION_ACTIONS = ('start', 'pause', 'end')


def _ensure_single_current(association_id, start_at, end_at, exclude_id=None):
    """At most one active election per association may cover any instant."""
    query = db.session.query(Election).filter(
        Election.association_id == association_id,
        Election.is_active.is_(True),
        Election.start_at <= end_at,
        Election.end_at >= start_at,
    )
    if exclude_id is not None:
        query = query.filter(Election.id != exclude_id)
    clash = query.first()
    if clash is not None:
        raise Conflict(f'Another active election ({clash.title}) overlaps this voting window.')


def create_election(association_id, title, start_at, end_at, description=None, is_active=False):
    title = (title or '').strip()
    if not title:
        raise ValidationError('Election title is required.')
    if start_at >= end_at:
        raise ValidationError('Election must start before it ends.')
    if is_active:
        _ensure_single_current(association_id, start_at, end_at)

    election = Election(
        title=title,
        description=description,
        start_at=start_at,
        end_at=end_at,
        is_active=is_active,
        association_id=association_id,
    )
    db.session.add(election)
    db.session.commit()
    logger.info("Election %s created for association %s", election.id, association_id)
    return election


def control_election(election, action, now=None):
    """Start, pause or end an election in place and commit."""
    if action not in ELECTION_ACTIONS:
        raise ValidationError('Invalid action.')
    now = now or utcnow()
    if action == 'start':
        start_at = min(election.start_at, now)
        if now > election.end_at:
            raise ValidationError('Election has already ended.')
        _ensure_single_current(election.association_id, start_at, election.end_at, exclude_id=election.id)
        election.is_active = True
        election.start_at = start_at
    elif action == 'pause':
        election.is_active = False
    else:
        election.is_active = False
        election.end_at = now
    db.session.commit()
    logger.info("Election %s: %s", election.id, action)
    return election


def get_association_election(election_id, association_id):
    election = (
        db.session.query(Election)
        .filter_by(id=election_id, association_id=association_id)
        .first()
    )
    if election is None:
        raise NotFound('Election not found.')
    return election


def create_position(association_id, name, order=0, max_candidates=10, description=None):
    name = (name or '').strip()
    if not name:
        raise ValidationError('Position name is required.')
    if max_candidates < 1:
        raise ValidationError('A position must allow at least one candidate.')
    if order < 0:
        raise ValidationError('Position order cannot be negative.')

    existing = db.session.query(Position.id).filter_by(name=name, association_id=association_id).first()
    if existing is not None:
        raise Conflict('Position already exists.')

    position = Position(
        name=name,
        description=description,
        order=order,
        max_candidates=max_candidates,
        association_id=association_id,
    )
    db.session.add(position)
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise Conflict('Position already exists.') from e
    return position


def list_positions(association_id):
    return (
        db.session.query(Position)
        .filter_by(association_id=association_id)
        .order_by(Position.order, Position.name)
        .all()
    )


def _association_position(position_id, association_id):
    position = (
        db.session.query(Position)
        .filter_by(id=position_id, association_id=association_id)
        .first()
    )
    if position is None:
        raise NotFound('Position not found.')
    return position


def _check_candidate_slot(name, election_id, position, exclude_id=None):
    duplicates = db.session.query(Candidate.id).filter_by(
        name=name, election_id=election_id, position_id=position.id,
    )
    candidates = db.session.query(Candidate).filter_by(election_id=election_id, position_id=position.id)
    if exclude_id is not None:
        duplicates = duplicates.filter(Candidate.id != exclude_id)
        candidates = candidates.filter(Candidate.id != exclude_id)
    if duplicates.first() is not None:
        raise Conflict('Candidate with this name already exists for this position.')
    if candidates.count() >= position.max_candidates:
        raise ValidationError(f'Maximum {position.max_candidates} candidates allowed for this position.')


def register_candidate(association_id, election_id, position_id, name,
                       manifesto_url=None, manifesto_text=None, photo_url=None):
    """Create a candidate, enforcing name uniqueness and the position's cap."""
    name = (name or '').strip()
    if not name:
        raise ValidationError('Candidate name is required.')

    election = get_association_election(election_id, association_id)
    position = _association_position(position_id, association_id)
    _check_candidate_slot(name, election.id, position)

    candidate = Candidate(
        name=name,
        election_id=election.id,
        position_id=position.id,
        manifesto_url=manifesto_url,
        manifesto_text=manifesto_text,
        photo_url=photo_url,
    )
    db.session.add(candidate)
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise Conflict('Candidate with this name already exists for this position.') from e
    return candidate


def update_candidate(candidate, association_id, name=None, position_id=None,
                     manifesto_url=None, photo_url=None):
    """Apply profile changes and flush; the caller commits.

    Renames and position moves are re-checked against uniqueness and the
    target position's cap, and the stored chunk metadata follows them.
    """
    new_name = candidate.name if name is None else name.strip()
    if not new_name:
        raise ValidationError('Candidate name is required.')
    position = candidate.position
    if position_id is not None and position_id != candidate.position_id:
        position = _association_position(position_id, association_id)
        _check_candidate_slot(new_name, candidate.election_id, position, exclude_id=candidate.id)
    elif new_name != candidate.name:
        _check_candidate_slot(new_name, candidate.election_id, position, exclude_id=candidate.id)

    relabel = new_name != candidate.name or position.id != candidate.position_id
    candidate.name = new_name
    candidate.position = position
    if manifesto_url is not None:
        candidate.manifesto_url = manifesto_url
    if photo_url is not None:
        candidate.photo_url = photo_url

    if relabel:
        chunks = db.session.query(ManifestoChunk).filter_by(
            candidate_id=candidate.id, election_id=candidate.election_id,
        )
        for chunk in chunks:
            chunk.chunk_metadata = dict(chunk.chunk_metadata or {}, candidate_name=new_name, position=position.name)
    try:
        db.session.flush()
    except IntegrityError as e:
        db.session.rollback()
        raise Conflict('Candidate with this name already exists for this position.') from e
    return candidate


def delete_candidate(candidate, vector_store):
    """Withdraw a candidate who has not received any vote."""
    votes = db.session.query(Vote.id).filter_by(candidate_id=candidate.id).first()
    if votes is not None:
        raise Conflict('Cannot delete candidate with existing votes.')
    removed = vector_store.remove_manifesto(candidate.id, candidate.election_id)
    db.session.delete(candidate)
    db.session.commit()
    logger.info("Candidate %s deleted (%d manifesto chunks removed)", candidate.id, removed)
    return removed
