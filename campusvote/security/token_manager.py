# campusvote/security/token_manager.py

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from flask_jwt_extended import create_access_token, get_jwt
from sqlalchemy.exc import IntegrityError

from campusvote import db
from campusvote.database.models import RevokedToken, utcnow

# Voter and admin sessions carried as Flask-JWT-Extended access tokens.
# A voter session is single-use: it is revoked after a ballot is committed
# and after an "already voted" rejection.

logger = logging.getLogger(__name__)

VOTER_ROLE = 'voter'
ADMIN_ROLE = 'admin'


@dataclass(frozen=True)
class VoterSession:
    voter_id: str
    association_id: str
    issued_at: datetime
    token_id: Optional[str] = None


@dataclass(frozen=True)
class AdminSession:
    admin_id: str
    association_id: str
    token_id: Optional[str] = None


def session_expired(session: VoterSession, now: datetime, max_age: timedelta) -> bool:
    return now - session.issued_at > max_age


def _to_timestamp(value: datetime) -> float:
    return value.replace(tzinfo=timezone.utc).timestamp()


def _from_timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(value, timezone.utc).replace(tzinfo=None)


class SessionManager:
    def __init__(self, max_age: timedelta = timedelta(minutes=15)):
        self.max_age = max_age

    def issue_voter_token(self, voter, now: Optional[datetime] = None) -> str:
        issued_at = now or utcnow()
        return create_access_token(
            identity=voter.id,
            additional_claims={
                'role': VOTER_ROLE,
                'association_id': voter.association_id,
                'issued_at': _to_timestamp(issued_at),
            },
            expires_delta=self.max_age,
        )

    def issue_admin_token(self, admin) -> str:
        return create_access_token(
            identity=admin.id,
            additional_claims={'role': ADMIN_ROLE, 'association_id': admin.association_id},
        )

    @staticmethod
    def voter_session_from_claims(claims) -> Optional[VoterSession]:
        if claims.get('role') != VOTER_ROLE:
            return None
        try:
            return VoterSession(
                voter_id=claims['sub'],
                association_id=claims['association_id'],
                issued_at=_from_timestamp(claims['issued_at']),
                token_id=claims.get('jti'),
            )
        except (KeyError, TypeError, ValueError, OverflowError):
            return None

    @staticmethod
    def admin_session_from_claims(claims) -> Optional[AdminSession]:
        if claims.get('role') != ADMIN_ROLE or 'association_id' not in claims:
            return None
        return AdminSession(
            admin_id=claims['sub'],
            association_id=claims['association_id'],
            token_id=claims.get('jti'),
        )

    def current_voter_session(self, now: Optional[datetime] = None) -> Optional[VoterSession]:
        """Voter session of the current request, or None when absent or expired.

        Must be called inside a request protected by ``jwt_required``.
        """
        session = self.voter_session_from_claims(get_jwt())
        if session is None:
            return None
        if session_expired(session, now or utcnow(), self.max_age):
            self.revoke(session)
            return None
        return session

    def current_admin_session(self) -> Optional[AdminSession]:
        return self.admin_session_from_claims(get_jwt())

    def revoke(self, session) -> None:
        if not session.token_id or RevokedToken.is_revoked(session.token_id):
            return
        db.session.add(RevokedToken(jti=session.token_id))
        try:
            db.session.commit()
        except IntegrityError:
            # A concurrent request revoked the same token first
            db.session.rollback()
            logger.debug("Token %s already revoked", session.token_id)
