# campusvote/security/input_validator.py

import re
from datetime import datetime, timezone

import bleach

from campusvote.exceptions import ValidationError
from campusvote.voting.ballot import Selection

# Request payload validation and sanitization for the voting and AI endpoints

INDEX_ACTIONS = ('add', 'update', 'remove')


class InputValidator:
    def __init__(self):
        self.patterns = {
            'email': re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'),
            'student_id': re.compile(r'^[A-Za-z0-9/._-]{1,50}$'),
            'identifier': re.compile(r'^[A-Za-z0-9_-]{1,64}$'),
        }

    def sanitize_string(self, input_str, max_length=255):
        if not isinstance(input_str, str):
            raise ValidationError("Input must be a string.")
        if len(input_str) > max_length:
            input_str = input_str[:max_length]
        # Plain text only; tags are stripped rather than escaped
        return bleach.clean(input_str, tags=[], attributes={}, strip=True).strip()

    def validate_email(self, email):
        return isinstance(email, str) and bool(self.patterns['email'].match(email))

    def validate_student_id(self, student_id):
        return isinstance(student_id, str) and bool(self.patterns['student_id'].match(student_id))

    def validate_identifier(self, value):
        return isinstance(value, str) and bool(self.patterns['identifier'].match(value))

    def _require_object(self, payload):
        if not isinstance(payload, dict):
            raise ValidationError('Request body must be a JSON object.')
        return payload

    def _require_identifier(self, payload, field, label):
        value = payload.get(field)
        if not self.validate_identifier(value):
            raise ValidationError(f'{label} is required.')
        return value

    def validate_voter_login(self, payload):
        payload = self._require_object(payload)
        student_id = payload.get('studentId')
        password = payload.get('password')
        if not isinstance(student_id, str) or not student_id.strip():
            raise ValidationError('Student ID is required.')
        if not isinstance(password, str) or not password:
            raise ValidationError('Password is required.')
        student_id = student_id.strip()
        if not self.validate_student_id(student_id):
            raise ValidationError('Invalid student ID or password.')
        return student_id, password

    def validate_admin_login(self, payload):
        payload = self._require_object(payload)
        email = payload.get('email')
        password = payload.get('password')
        if not self.validate_email(email) or not isinstance(password, str) or not password:
            raise ValidationError('Invalid email or password.')
        return email.lower(), password

    def validate_ballot(self, payload):
        """Shape check only; emptiness and consistency belong to the ballot service."""
        payload = self._require_object(payload)
        election_id = self._require_identifier(payload, 'electionId', 'Election ID')
        votes = payload.get('votes')
        if not isinstance(votes, list) or len(votes) > 100:
            raise ValidationError('Invalid vote data.')
        selections = []
        for vote in votes:
            if not isinstance(vote, dict):
                raise ValidationError('Invalid vote data.')
            position_id = vote.get('positionId')
            candidate_id = vote.get('candidateId')
            if not self.validate_identifier(position_id) or not self.validate_identifier(candidate_id):
                raise ValidationError('Invalid vote data.')
            selections.append(Selection(position_id=position_id, candidate_id=candidate_id))
        return election_id, selections

    def validate_question(self, payload):
        payload = self._require_object(payload)
        election_id = self._require_identifier(payload, 'electionId', 'Election ID')
        question = payload.get('question')
        if not isinstance(question, str):
            raise ValidationError('Election ID and question are required.')
        question = self.sanitize_string(question, max_length=1000)
        if len(question) < 3:
            raise ValidationError('Question must be at least 3 characters long.')
        candidate_ids = payload.get('candidateIds')
        if candidate_ids is not None:
            if not isinstance(candidate_ids, list) or not all(self.validate_identifier(c) for c in candidate_ids):
                raise ValidationError('Invalid candidate filter.')
        return election_id, question, candidate_ids or None

    def validate_index_request(self, payload):
        payload = self._require_object(payload)
        candidate_id = self._require_identifier(payload, 'candidateId', 'Candidate ID')
        election_id = self._require_identifier(payload, 'electionId', 'Election ID')
        action = payload.get('action', 'add')
        if action not in INDEX_ACTIONS:
            raise ValidationError('Invalid action.')
        text = payload.get('manifestoText')
        if action != 'remove' and not isinstance(text, str):
            raise ValidationError('Manifesto text is required.')
        return candidate_id, election_id, text, action

    def validate_candidate(self, payload):
        payload = self._require_object(payload)
        name = payload.get('name')
        if not isinstance(name, str) or not name.strip():
            raise ValidationError('Candidate name is required.')
        election_id = self._require_identifier(payload, 'electionId', 'Election')
        position_id = self._require_identifier(payload, 'positionId', 'Position')
        fields = {}
        self._optional_url(payload, 'manifesto', fields, 'manifesto_url')
        self._optional_url(payload, 'photoUrl', fields, 'photo_url')
        text = payload.get('manifestoText')
        if text is not None:
            if not isinstance(text, str):
                raise ValidationError('Manifesto text must be a string.')
            fields['manifesto_text'] = text
        return self.sanitize_string(name, max_length=150), election_id, position_id, fields

    def _optional_url(self, payload, key, fields, target):
        value = payload.get(key)
        if value is not None:
            fields[target] = self.sanitize_string(value, max_length=500)

    def validate_candidate_update(self, payload):
        payload = self._require_object(payload)
        fields = {}
        name = payload.get('name')
        if name is not None:
            if not isinstance(name, str) or not name.strip():
                raise ValidationError('Candidate name is required.')
            fields['name'] = self.sanitize_string(name, max_length=150)
        if payload.get('positionId') is not None:
            fields['position_id'] = self._require_identifier(payload, 'positionId', 'Position')
        self._optional_url(payload, 'manifesto', fields, 'manifesto_url')
        self._optional_url(payload, 'photoUrl', fields, 'photo_url')
        text = payload.get('manifestoText')
        if text is not None:
            if not isinstance(text, str) or not text.strip():
                raise ValidationError('Manifesto text is required.')
            fields['manifesto_text'] = text
        if not fields:
            raise ValidationError('No candidate fields to update.')
        return fields

    def parse_timestamp(self, value, label):
        """ISO-8601 to the naive UTC form the database stores."""
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f'{label} is required.')
        value = value.strip()
        if value.endswith(('Z', 'z')):
            value = value[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError as e:
            raise ValidationError(f'{label} must be an ISO-8601 date and time.') from e
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed

    def validate_election(self, payload):
        payload = self._require_object(payload)
        title = payload.get('title')
        if not isinstance(title, str) or not title.strip():
            raise ValidationError('Election title is required.')
        description = payload.get('description')
        if description is not None:
            description = self.sanitize_string(description, max_length=2000)
        start_at = self.parse_timestamp(payload.get('startAt'), 'Start time')
        end_at = self.parse_timestamp(payload.get('endAt'), 'End time')
        is_active = payload.get('isActive', False)
        if not isinstance(is_active, bool):
            raise ValidationError('isActive must be true or false.')
        return self.sanitize_string(title, max_length=200), start_at, end_at, {
            'description': description, 'is_active': is_active,
        }

    def _integer(self, payload, key, default, label):
        value = payload.get(key, default)
        # bool is an int subclass
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f'{label} must be a whole number.')
        return value

    def validate_position(self, payload):
        payload = self._require_object(payload)
        name = payload.get('name')
        if not isinstance(name, str) or not name.strip():
            raise ValidationError('Position name is required.')
        description = payload.get('description')
        if description is not None:
            description = self.sanitize_string(description, max_length=1000)
        return self.sanitize_string(name, max_length=150), {
            'description': description,
            'order': self._integer(payload, 'order', 0, 'Order'),
            'max_candidates': self._integer(payload, 'maxCandidates', 10, 'maxCandidates'),
        }
