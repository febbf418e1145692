# campusvote/database/models.py

import uuid
from datetime import datetime, timezone

from campusvote import db


def new_id():
    return uuid.uuid4().hex


def utcnow():
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Association(db.Model):
    __tablename__ = 'associations'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    name = db.Column(db.String(150), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    elections = db.relationship('Election', backref='association', lazy=True)
    positions = db.relationship('Position', backref='association', lazy=True)


class Admin(db.Model):
    __tablename__ = 'admins'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    email = db.Column(db.String(254), unique=True, nullable=False)
    password_hash = db.Column(db.String(200), nullable=False)  # Argon2id
    association_id = db.Column(db.String(32), db.ForeignKey('associations.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)


class Election(db.Model):
    __tablename__ = 'elections'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    start_at = db.Column(db.DateTime, nullable=False)
    end_at = db.Column(db.DateTime, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=False)
    association_id = db.Column(db.String(32), db.ForeignKey('associations.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    # Deleting an election is irreversible and takes its ballots and AI data with it
    candidates = db.relationship('Candidate', backref='election', lazy=True, cascade='all, delete-orphan')
    votes = db.relationship('Vote', backref='election', lazy=True, cascade='all, delete-orphan')
    manifesto_chunks = db.relationship('ManifestoChunk', lazy=True, cascade='all, delete-orphan')
    faqs = db.relationship('FrequentlyAskedQuestion', lazy=True, cascade='all, delete-orphan')

    def is_open(self, now):
        return self.is_active and self.start_at <= now <= self.end_at

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'startAt': self.start_at.isoformat(),
            'endAt': self.end_at.isoformat(),
            'isActive': self.is_active,
        }


class Position(db.Model):
    __tablename__ = 'positions'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text, nullable=True)
    order = db.Column(db.Integer, nullable=False, default=0)
    max_candidates = db.Column(db.Integer, nullable=False, default=10)
    association_id = db.Column(db.String(32), db.ForeignKey('associations.id'), nullable=False)

    candidates = db.relationship('Candidate', backref='position', lazy=True)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'order': self.order,
            'maxCandidates': self.max_candidates,
        }


class Candidate(db.Model):
    __tablename__ = 'candidates'
    __table_args__ = (
        db.UniqueConstraint('name', 'election_id', 'position_id', name='uq_candidate_name_election_position'),
    )
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    name = db.Column(db.String(150), nullable=False)
    manifesto_url = db.Column(db.String(500), nullable=True)
    manifesto_text = db.Column(db.Text, nullable=True)
    manifesto_summary = db.Column(db.Text, nullable=True)
    photo_url = db.Column(db.String(500), nullable=True)
    election_id = db.Column(db.String(32), db.ForeignKey('elections.id'), nullable=False)
    position_id = db.Column(db.String(32), db.ForeignKey('positions.id'), nullable=False)

    votes = db.relationship('Vote', backref='candidate', lazy=True)

    def to_ballot_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'manifesto': self.manifesto_url,
            'photoUrl': self.photo_url,
        }


class Voter(db.Model):
    __tablename__ = 'voters'
    __table_args__ = (
        db.UniqueConstraint('student_id', 'association_id', name='uq_voter_student_association'),
    )
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(254), nullable=False)
    student_id = db.Column(db.String(50), nullable=False, index=True)
    password_hash = db.Column(db.String(200), nullable=False)  # Argon2id, never plaintext
    # Written only by BallotService.cast_ballot
    has_voted = db.Column(db.Boolean, nullable=False, default=False)
    voted_at = db.Column(db.DateTime, nullable=True)
    association_id = db.Column(db.String(32), db.ForeignKey('associations.id'), nullable=False)

    association = db.relationship('Association', lazy=True)
    votes = db.relationship('Vote', backref='voter', lazy=True)


class Vote(db.Model):
    __tablename__ = 'votes'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    voter_id = db.Column(db.String(32), db.ForeignKey('voters.id'), nullable=False, index=True)
    election_id = db.Column(db.String(32), db.ForeignKey('elections.id'), nullable=False, index=True)
    candidate_id = db.Column(db.String(32), db.ForeignKey('candidates.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def __repr__(self):
        return f'<Vote {self.id} for Candidate {self.candidate_id}>'


class ManifestoChunk(db.Model):
    __tablename__ = 'manifesto_chunks'
    __table_args__ = (
        db.Index('ix_manifesto_chunks_election_candidate', 'election_id', 'candidate_id'),
    )
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    election_id = db.Column(db.String(32), db.ForeignKey('elections.id'), nullable=False)
    candidate_id = db.Column(db.String(32), db.ForeignKey('candidates.id'), nullable=False)
    chunk_text = db.Column(db.Text, nullable=False)
    embedding = db.Column(db.JSON, nullable=False)  # list[float]
    chunk_index = db.Column(db.Integer, nullable=False)
    total_chunks = db.Column(db.Integer, nullable=False)
    chunk_metadata = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime, default=utcnow)


class FrequentlyAskedQuestion(db.Model):
    __tablename__ = 'frequently_asked_questions'
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    election_id = db.Column(db.String(32), db.ForeignKey('elections.id'), nullable=False, index=True)
    question = db.Column(db.Text, nullable=False)
    answer = db.Column(db.Text, nullable=False)
    sources = db.Column(db.JSON, nullable=False, default=list)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'question': self.question,
            'answer': self.answer,
            'sources': self.sources,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }


class RevokedToken(db.Model):
    __tablename__ = 'revoked_tokens'
    id = db.Column(db.Integer, primary_key=True)
    jti = db.Column(db.String(64), unique=True, nullable=False)
    revoked_at = db.Column(db.DateTime, default=utcnow)

    @classmethod
    def is_revoked(cls, jti):
        return db.session.query(cls.id).filter_by(jti=jti).first() is not None
