# tests/conftest.py
import re
from datetime import timedelta
from types import SimpleNamespace

import pytest

from campusvote import build_services, create_app, db
from campusvote.config import TestingConfig
from campusvote.database.models import (
    Admin,
    Association,
    Candidate,
    Election,
    Position,
    Voter,
    utcnow,
)
from campusvote.encryption.password_hashing import PasswordHashingService
from campusvote.exceptions import AIServiceError
from campusvote.security.token_manager import VoterSession

VOTER_PASSWORD = "kq7m2xpa"
ADMIN_PASSWORD = "Adm1n-Passw0rd!"

VOCABULARY = [
    "housing", "library", "transport", "parking", "mental", "health",
    "sports", "food", "fees", "scholarship", "wifi", "hostel",
]


class FakeEmbedder:
    """Bag-of-words vectors over a fixed vocabulary, plus a constant bias term."""

    def __init__(self, fail_on=None):
        self.fail_on = fail_on or []
        self.calls = []

    def embed_query(self, text):
        self.calls.append(text)
        if any(marker in text for marker in self.fail_on):
            raise AIServiceError("embedding provider unavailable")
        words = re.findall(r"[a-z]+", text.lower())
        return [float(words.count(term)) for term in VOCABULARY] + [0.1]


class FakeLLM:
    def __init__(self, answer=None, error=None):
        self.answer = answer or (
            "Ada Obi promises new hostel blocks and Ben Eze proposes a housing "
            "allowance for final year students."
        )
        self.error = error
        self.prompts = []

    def complete(self, prompt):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.answer


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def app(tmp_path, embedder, llm):
    class Config(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'campusvote.db'}"
        AUDIT_LOG_DIR = str(tmp_path / "audit")

    app = create_app(Config)
    app.extensions['campusvote'] = build_services(app.config, embedder=embedder, llm=llm)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture
def services(app):
    return app.extensions['campusvote']


@pytest.fixture
def client(app):
    with app.test_client() as client:
        yield client


@pytest.fixture
def seed(app):
    """An open election with two contested positions and two eligible voters.

    Returns plain identifiers so tests can open their own app contexts.
    """
    pwhash = PasswordHashingService()
    voter_hash = pwhash.hash_password(VOTER_PASSWORD, enforce_policy=False)
    now = utcnow()
    with app.app_context():
        association = Association(name="Computer Science Students")
        other = Association(name="Law Students")
        db.session.add_all([association, other])
        db.session.flush()

        election = Election(
            title="2026 Executive Elections",
            start_at=now - timedelta(hours=1),
            end_at=now + timedelta(hours=6),
            is_active=True,
            association_id=association.id,
        )
        president = Position(name="President", order=1, association_id=association.id)
        secretary = Position(name="Secretary", order=2, max_candidates=2, association_id=association.id)
        treasurer = Position(name="Treasurer", order=3, association_id=association.id)
        db.session.add_all([election, president, secretary, treasurer])
        db.session.flush()

        ada = Candidate(name="Ada Obi", election_id=election.id, position_id=president.id)
        ben = Candidate(name="Ben Eze", election_id=election.id, position_id=president.id)
        cleo = Candidate(name="Cleo Uche", election_id=election.id, position_id=secretary.id)
        dayo = Candidate(name="Dayo Ade", election_id=election.id, position_id=secretary.id)
        voter = Voter(first_name="Tobi", last_name="Ola", email="tobi@example.edu",
                      student_id="CSC/2021/001", password_hash=voter_hash, association_id=association.id)
        second_voter = Voter(first_name="Nneka", last_name="Eke", email="nneka@example.edu",
                             student_id="CSC/2021/002", password_hash=voter_hash,
                             association_id=association.id)
        outsider = Voter(first_name="Femi", last_name="Bello", email="femi@example.edu",
                         student_id="LAW/2021/001", password_hash=voter_hash, association_id=other.id)
        admin = Admin(email="admin@example.edu", password_hash=pwhash.hash_password(ADMIN_PASSWORD),
                      association_id=association.id)
        db.session.add_all([ada, ben, cleo, dayo, voter, second_voter, outsider, admin])
        db.session.commit()

        return SimpleNamespace(
            association_id=association.id,
            other_association_id=other.id,
            election_id=election.id,
            start_at=election.start_at,
            end_at=election.end_at,
            president_id=president.id,
            secretary_id=secretary.id,
            treasurer_id=treasurer.id,
            ada_id=ada.id,
            ben_id=ben.id,
            cleo_id=cleo.id,
            dayo_id=dayo.id,
            voter_id=voter.id,
            second_voter_id=second_voter.id,
            outsider_id=outsider.id,
            admin_id=admin.id,
        )


@pytest.fixture
def voter_session(seed):
    return VoterSession(voter_id=seed.voter_id, association_id=seed.association_id, issued_at=utcnow())


@pytest.fixture
def ballot(seed):
    """Ada for President, Cleo for Secretary."""
    return [
        {"positionId": seed.president_id, "candidateId": seed.ada_id},
        {"positionId": seed.secretary_id, "candidateId": seed.cleo_id},
    ]
