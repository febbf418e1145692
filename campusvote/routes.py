# campusvote/routes.py

# JSON API for voters and association admins.
# Calls the ballot, results and manifesto services wired in create_app().

import logging
from functools import wraps

from flask import Blueprint, current_app, request
from flask_jwt_extended import (
    get_jwt,
    get_jwt_identity,
    jwt_required,
    set_access_cookies,
    unset_jwt_cookies,
    verify_jwt_in_request,
)
from flask_jwt_extended.exceptions import JWTExtendedException
from flask_limiter.util import get_remote_address
from jwt.exceptions import PyJWTError

from campusvote import db, limiter
from campusvote.authentication.rbac import Permission, require_permission
from campusvote.database.models import Admin, Candidate, Election, RevokedToken, Voter, utcnow
from campusvote.encryption.password_hashing import PasswordHashingService
from campusvote.exceptions import AlreadyVoted, ManifestoIndexingError, NotFound, Unauthorized, VotingError
from campusvote.operations.health_monitor import check_health
from campusvote.responses import fail, success
from campusvote.security.input_validator import InputValidator
from campusvote.security.token_manager import ADMIN_ROLE, VOTER_ROLE
from campusvote.voting.ballot import voter_reference
from campusvote.voting.elections import (
    control_election,
    create_election,
    create_position,
    delete_candidate,
    get_association_election,
    list_positions,
    register_candidate,
    update_candidate,
)
from campusvote.voting.results import tabulate_election

logger = logging.getLogger(__name__)

bp = Blueprint('campusvote', __name__)

password_service = PasswordHashingService()
validator = InputValidator()


def _services():
    return current_app.extensions['campusvote']


def _voter_session():
    session = _services().sessions.current_voter_session()
    if session is None:
        raise Unauthorized()
    return session


def _admin_session():
    session = _services().sessions.current_admin_session()
    if session is None:
        raise Unauthorized()
    return session


def _caller_association_id():
    """Association of the voter or admin behind the current token."""
    if get_jwt().get('role') == VOTER_ROLE:
        return _voter_session().association_id
    return _admin_session().association_id


def voter_required(func):
    @wraps(func)
    @jwt_required()
    def wrapper(*args, **kwargs):
        if get_jwt().get('role') != VOTER_ROLE:
            return fail('Insufficient permissions', status=403)
        return func(*args, **kwargs)
    return wrapper


def _without_cookies(result):
    response, status = result
    unset_jwt_cookies(response)
    return response, status


def session_rate_key():
    """Rate-limit key of the session behind the request, else the client address.

    Whole halls of voters can share one campus NAT address.
    """
    try:
        verify_jwt_in_request(optional=True)
    except (JWTExtendedException, PyJWTError):
        return get_remote_address()
    identity = get_jwt_identity()
    return f'session:{identity}' if identity else get_remote_address()


def login_rate_key():
    payload = request.get_json(silent=True)
    student_id = payload.get('studentId') if isinstance(payload, dict) else None
    if isinstance(student_id, str) and student_id.strip():
        return f'login:{student_id.strip().lower()}'
    return get_remote_address()


# ---------------------------------------------------------------- auth

@bp.route('/auth/voter/login', methods=['POST'])
@limiter.limit("10/minute", key_func=login_rate_key)
@limiter.limit("300/minute")
def voter_login():
    student_id, password = validator.validate_voter_login(request.get_json(silent=True))
    services = _services()

    # Student IDs are unique per association only
    voter = next(
        (v for v in db.session.query(Voter).filter_by(student_id=student_id).all()
         if password_service.verify_password(password, v.password_hash)),
        None,
    )
    if voter is None:
        services.audit.log_event('failed_login', {'role': VOTER_ROLE, 'ip': request.remote_addr})
        return fail('Invalid student ID or password.', status=401)

    if voter.has_voted:
        return fail('You have already voted. Multiple voting is not allowed.', status=403)

    now = utcnow()
    elections = (
        db.session.query(Election)
        .filter_by(association_id=voter.association_id, is_active=True)
        .order_by(Election.start_at)
        .all()
    )
    if not any(e.is_open(now) for e in elections):
        if any(e.start_at > now for e in elections):
            upcoming = min((e for e in elections if e.start_at > now), key=lambda e: e.start_at)
            message = f"Election has not started yet. Voting begins at {upcoming.start_at.isoformat()}Z."
        elif elections:
            message = 'Voting has ended for all active elections.'
        else:
            message = 'No active election found for your association.'
        return fail(message, status=400)

    token = services.sessions.issue_voter_token(voter, now=now)
    services.audit.log_event('voter_login', {'voter_ref': voter_reference(voter.id)})
    response, status = success('Login successful.', {
        'voter': {
            'id': voter.id,
            'firstName': voter.first_name,
            'lastName': voter.last_name,
            'associationId': voter.association_id,
        },
        'expiresInMinutes': current_app.config['VOTER_SESSION_MINUTES'],
    })
    set_access_cookies(response, token)
    return response, status


@bp.route('/auth/voter/logout', methods=['POST'])
@voter_required
def voter_logout():
    session = _services().sessions.voter_session_from_claims(get_jwt())
    if session is not None:
        _services().sessions.revoke(session)
    return _without_cookies(success('Logged out.'))


@bp.route('/auth/voter/me', methods=['GET'])
@voter_required
def voter_me():
    session = _voter_session()
    voter = db.session.get(Voter, session.voter_id)
    if voter is None:
        raise NotFound('Voter not found.')
    return success('Voter profile.', {
        'id': voter.id,
        'firstName': voter.first_name,
        'lastName': voter.last_name,
        'studentId': voter.student_id,
        'associationId': voter.association_id,
        'associationName': voter.association.name if voter.association else None,
        'hasVoted': voter.has_voted,
    })


@bp.route('/auth/admin/login', methods=['POST'])
@limiter.limit("10/minute")
def admin_login():
    email, password = validator.validate_admin_login(request.get_json(silent=True))
    admin = db.session.query(Admin).filter_by(email=email).first()
    if admin is None or not password_service.verify_password(password, admin.password_hash):
        _services().audit.log_event('failed_login', {'role': ADMIN_ROLE, 'ip': request.remote_addr})
        return fail('Invalid email or password.', status=401)

    token = _services().sessions.issue_admin_token(admin)
    response, status = success('Login successful.', {'adminId': admin.id, 'associationId': admin.association_id})
    set_access_cookies(response, token)
    return response, status


# ---------------------------------------------------------------- voting

@bp.route('/voting/elections', methods=['GET'])
@require_permission(Permission.VIEW_BALLOT)
def list_elections():
    session = _voter_session()
    elections = _services().ballots.active_elections(session)
    return success('Active elections.', [e.to_dict() for e in elections])


@bp.route('/voting/elections/<election_id>/positions', methods=['GET'])
@require_permission(Permission.VIEW_BALLOT)
def election_positions(election_id):
    session = _voter_session()
    positions = _services().ballots.get_ballot(session, election_id)
    return success('Ballot loaded.', positions)


@bp.route('/voting/cast', methods=['POST'])
@limiter.limit("5/minute", key_func=session_rate_key)
@require_permission(Permission.CAST_VOTE)
def cast_vote():
    session = _voter_session()
    election_id, selections = validator.validate_ballot(request.get_json(silent=True))
    try:
        receipt = _services().ballots.cast_ballot(session, election_id, selections)
    except AlreadyVoted as e:
        return _without_cookies(fail(e.message, status=e.status_code))

    data = receipt.to_dict()
    data['notice'] = 'You will now be logged out automatically for security purposes.'
    return _without_cookies(success(
        'Your votes have been cast successfully. Thank you for participating!', data,
    ))


@bp.route('/results/elections/<election_id>', methods=['GET'])
@jwt_required()
def election_results(election_id):
    get_association_election(election_id, _caller_association_id())
    results = tabulate_election(election_id)
    return success('Election results.', results.to_dict())


# ---------------------------------------------------------------- administration

@bp.route('/election/create', methods=['POST'])
@require_permission(Permission.MANAGE_ELECTIONS)
def create_association_election():
    admin = _admin_session()
    title, start_at, end_at, fields = validator.validate_election(request.get_json(silent=True))
    election = create_election(admin.association_id, title, start_at, end_at, **fields)
    _services().audit.log_event('election_created', {
        'election_id': election.id, 'is_active': election.is_active,
    }, actor_id=admin.admin_id)
    return success('Election created successfully.', election.to_dict(), status=201)


@bp.route('/positions', methods=['GET'])
@require_permission(Permission.MANAGE_CANDIDATES)
def association_positions():
    admin = _admin_session()
    return success('Positions fetched successfully.', [p.to_dict() for p in list_positions(admin.association_id)])


@bp.route('/positions', methods=['POST'])
@require_permission(Permission.MANAGE_ELECTIONS)
def create_association_position():
    admin = _admin_session()
    name, fields = validator.validate_position(request.get_json(silent=True))
    position = create_position(admin.association_id, name, **fields)
    return success('Position created successfully.', position.to_dict(), status=201)


@bp.route('/election/<election_id>/control', methods=['PUT'])
@require_permission(Permission.MANAGE_ELECTIONS)
def election_control(election_id):
    admin = _admin_session()
    payload = request.get_json(silent=True) or {}
    election = get_association_election(election_id, admin.association_id)
    control_election(election, payload.get('action'))
    _services().audit.log_event('election_control', {
        'election_id': election.id, 'action': payload.get('action'),
    }, actor_id=admin.admin_id)
    return success(f"Election {payload.get('action')} successful.", election.to_dict())


@bp.route('/candidates', methods=['POST'])
@require_permission(Permission.MANAGE_CANDIDATES)
def create_candidate():
    admin = _admin_session()
    name, election_id, position_id, fields = validator.validate_candidate(request.get_json(silent=True))
    candidate = register_candidate(admin.association_id, election_id, position_id, name, **fields)

    indexing = None
    if candidate.manifesto_text:
        # Candidate creation stands even when the manifesto cannot be indexed
        try:
            indexing = _services().vector_store.add_manifesto(
                candidate.id, election_id, candidate.manifesto_text
            ).to_dict()
        except ManifestoIndexingError as e:
            indexing = e.data or {'success': False}
    return success('Candidate created.', {
        'candidate': candidate.to_ballot_dict(),
        'manifestoIndexing': indexing,
    }, status=201)


def _candidate_for_caller(candidate_id):
    candidate = db.session.get(Candidate, candidate_id)
    if candidate is None or candidate.election.association_id != _caller_association_id():
        raise NotFound('Candidate not found.')
    return candidate


@bp.route('/candidates/<candidate_id>', methods=['PUT'])
@require_permission(Permission.MANAGE_CANDIDATES)
def edit_candidate(candidate_id):
    admin = _admin_session()
    candidate = _candidate_for_caller(candidate_id)
    fields = validator.validate_candidate_update(request.get_json(silent=True))
    text = fields.pop('manifesto_text', None)
    update_candidate(candidate, admin.association_id, **fields)

    indexing = None
    if text is None:
        db.session.commit()
    else:
        # Profile changes commit together with the new chunks, or not at all
        candidate.manifesto_text = text
        indexing = _services().vector_store.update_manifesto(candidate.id, candidate.election_id, text).to_dict()
    _services().audit.log_event('candidate_updated', {
        'candidate_id': candidate.id, 'fields': sorted(fields), 'reindexed': text is not None,
    }, actor_id=admin.admin_id)
    return success('Candidate updated successfully.', {
        'candidate': candidate.to_ballot_dict(),
        'manifestoIndexing': indexing,
    })


@bp.route('/candidates/<candidate_id>', methods=['DELETE'])
@require_permission(Permission.MANAGE_CANDIDATES)
def remove_candidate(candidate_id):
    admin = _admin_session()
    candidate = _candidate_for_caller(candidate_id)
    removed = delete_candidate(candidate, _services().vector_store)
    _services().audit.log_event('candidate_deleted', {'candidate_id': candidate_id}, actor_id=admin.admin_id)
    return success('Candidate deleted successfully.', {'chunksRemoved': removed})


@bp.route('/candidates/<candidate_id>/summary', methods=['GET'])
@require_permission(Permission.VIEW_SUMMARY)
def candidate_summary(candidate_id):
    candidate = _candidate_for_caller(candidate_id)
    return success('Manifesto summary.', {
        'candidateId': candidate.id,
        'name': candidate.name,
        'summary': candidate.manifesto_summary,
    })


@bp.route('/candidates/<candidate_id>/summary', methods=['POST'])
@require_permission(Permission.MANAGE_MANIFESTOS)
def generate_candidate_summary(candidate_id):
    candidate = _candidate_for_caller(candidate_id)
    summary = _services().qa.summarize(candidate)
    return success('Summary generated successfully.', {'candidateId': candidate.id, 'summary': summary})


# ---------------------------------------------------------------- manifesto AI

@bp.route('/ai/index-manifesto', methods=['POST'])
@require_permission(Permission.MANAGE_MANIFESTOS)
def index_manifesto():
    admin = _admin_session()
    candidate_id, election_id, text, action = validator.validate_index_request(request.get_json(silent=True))
    get_association_election(election_id, admin.association_id)
    store = _services().vector_store

    if action == 'remove':
        removed = store.remove_manifesto(candidate_id, election_id)
        return success('Manifesto removed from search index.', {'chunksRemoved': removed})

    candidate = _candidate_for_caller(candidate_id)
    # Committed together with the chunks, discarded if indexing fails outright
    candidate.manifesto_text = text
    if action == 'update':
        report = store.update_manifesto(candidate_id, election_id, text)
    else:
        report = store.add_manifesto(candidate_id, election_id, text)
    _services().audit.log_event('manifesto_indexed', {
        'candidate_id': candidate_id, 'election_id': election_id, 'action': action,
        'chunks': report.succeeded, 'failures': len(report.failures),
    }, actor_id=admin.admin_id)
    message = 'Manifesto added successfully.' if action == 'add' else 'Manifesto updated successfully.'
    return success(message, report.to_dict())


@bp.route('/ai/manifesto-qa', methods=['POST'])
@limiter.limit("30/minute", key_func=session_rate_key)
@require_permission(Permission.ASK_QUESTIONS)
def manifesto_qa():
    election_id, question, candidate_ids = validator.validate_question(request.get_json(silent=True))
    get_association_election(election_id, _caller_association_id())
    answer = _services().qa.ask(election_id, question, candidate_ids=candidate_ids)
    return success('Answer generated.', answer.to_dict())


@bp.route('/ai/regenerate-faq', methods=['POST'])
@require_permission(Permission.MANAGE_MANIFESTOS)
def regenerate_faq():
    admin = _admin_session()
    payload = request.get_json(silent=True) or {}
    election = get_association_election(payload.get('electionId'), admin.association_id)
    generated = _services().faq.regenerate(election.id)
    return success('FAQ regenerated.', {'electionId': election.id, 'generated': generated})


@bp.route('/ai/faq', methods=['GET'])
def list_faq():
    election_id = request.args.get('electionId')
    if not validator.validate_identifier(election_id):
        return fail('Election ID is required.', status=400)
    faqs = _services().faq.list_faqs(election_id)
    return success('Frequently asked questions.', [f.to_dict() for f in faqs])


@bp.route('/health', methods=['GET'])
def health():
    status = check_health(current_app.config['AUDIT_LOG_DIR'])
    if status['overall_ok']:
        return success('ok', status)
    return fail('degraded', status, status=503)


# ---------------------------------------------------------------- wiring

def register_error_handlers(app):
    @app.errorhandler(VotingError)
    def handle_voting_error(error):
        db.session.rollback()
        return fail(error.message, error.data, status=error.status_code)

    @app.errorhandler(429)
    def handle_rate_limit(error):
        return fail('Too many requests. Please slow down.', status=429)

    @app.errorhandler(500)
    def handle_internal_error(error):
        logger.error("Unhandled error: %s", error)
        db.session.rollback()
        return fail('Internal server error', status=500)


def register_jwt_callbacks(jwt):
    @jwt.token_in_blocklist_loader
    def token_revoked(jwt_header, jwt_payload):
        return RevokedToken.is_revoked(jwt_payload['jti'])

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return fail(Unauthorized.message, status=401)

    @jwt.revoked_token_loader
    def revoked_token(jwt_header, jwt_payload):
        return fail(Unauthorized.message, status=401)

    @jwt.unauthorized_loader
    def missing_token(reason):
        return fail('Unauthorized', status=401)

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return fail('Unauthorized', status=401)
