# campusvote/exceptions.py
"""Error taxonomy shared by the voting, results and manifesto services.

Every error a voter or administrator can see derives from VotingError and
carries a plain-language ``message`` plus the HTTP ``status_code`` the
boundary layer should answer with. Internal identifiers and stack detail
never go into ``message``.

Exception hierarchy:
- VotingError
  - NotFound: referenced voter/election/candidate does not exist
  - AlreadyVoted: the voter already committed a ballot
  - ElectionUnavailable: election missing, inactive or outside its window
  - InvalidSelection: candidate does not belong to the claimed position/election
  - ValidationError: malformed or empty input
  - Conflict: uniqueness violation on an admin write
  - Unauthorized: missing, expired or revoked session
  - BallotCommitError: storage failure while committing; safe to resubmit
  - ManifestoIndexingError: every chunk of a manifesto failed to index
- AIServiceError: an embedding or chat-completion call failed (never shown to users)
"""


class VotingError(Exception):
    status_code = 400
    message = 'Request could not be processed.'

    def __init__(self, message=None, data=None):
        if message is not None:
            self.message = message
        self.data = data
        super().__init__(self.message)


class NotFound(VotingError):
    status_code = 404
    message = 'The requested record was not found.'


class AlreadyVoted(VotingError):
    status_code = 403
    message = 'You have already voted. Multiple voting is not allowed.'


class ElectionUnavailable(VotingError):
    status_code = 404
    message = 'Election not found, not active, or has ended.'


class InvalidSelection(VotingError):
    status_code = 400
    message = 'Invalid candidate selection detected.'


class ValidationError(VotingError):
    status_code = 400
    message = 'Invalid input.'


class Conflict(VotingError):
    status_code = 409
    message = 'A record with these details already exists.'


class Unauthorized(VotingError):
    status_code = 401
    message = 'Session expired. Please login again.'


class BallotCommitError(VotingError):
    status_code = 503
    message = 'Your ballot could not be recorded. Please submit it again.'


class ManifestoIndexingError(VotingError):
    status_code = 502
    message = 'Failed to process manifesto.'


class AIServiceError(Exception):
    """Raised by the embedding/chat clients on transport or payload errors."""
