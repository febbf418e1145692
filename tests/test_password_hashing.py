import pytest
from campusvote.encryption.password_hashing import PasswordHashingService, VOTER_PASSWORD_ALPHABET

@pytest.fixture
def password_service():
    return PasswordHashingService()


def test_hash_and_verify_password(password_service):
    password = "StrongPass123!"
    hashed = password_service.hash_password(password)

    # Verify the original password works
    assert password_service.verify_password(password, hashed) is True

    # Wrong password should fail
    assert password_service.verify_password("WrongPass456!", hashed) is False

    # Check if hash needs rehash (should be False immediately)
    assert password_service.needs_rehash(hashed) is False


def test_hash_is_argon2id_and_salted(password_service):
    first = password_service.hash_password("StrongPass123!")
    second = password_service.hash_password("StrongPass123!")
    assert first.startswith("$argon2id$")
    assert first != second


def test_verify_rejects_garbage(password_service):
    assert password_service.verify_password("anything", "not-a-hash") is False
    assert password_service.verify_password("", "not-a-hash") is False
    assert password_service.verify_password("anything", None) is False


def test_admin_password_policy_enforced(password_service):
    with pytest.raises(ValueError):
        password_service.hash_password("weak")


def test_is_strong_password(password_service):
    # Strong password
    assert password_service.is_strong_password("MyStrongPass123!") is True

    # Too short
    assert password_service.is_strong_password("short1!") is False

    # Missing uppercase but still meets 3/4 → should be True
    assert password_service.is_strong_password("lowercase123!") is True

    # Missing number, uppercase and special → False
    assert password_service.is_strong_password("onlylowercaseletters") is False


def test_generate_voter_password(password_service):
    password = password_service.generate_voter_password()
    assert len(password) == 8
    assert set(password) <= set(VOTER_PASSWORD_ALPHABET)

    # Voter codes are exempt from the admin policy
    hashed = password_service.hash_password(password, enforce_policy=False)
    assert password_service.verify_password(password, hashed) is True
