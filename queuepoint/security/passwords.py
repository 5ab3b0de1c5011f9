from pwdlib import PasswordHash


password_hash = PasswordHash.recommended()


def hash_password(raw_password: str) -> str:
    return password_hash.hash(raw_password)


def verify_and_refresh(raw_password: str, hashed_password: str | None) -> tuple[bool, str | None]:
    """Verify, and hand back a fresh hash when the stored one uses outdated parameters."""
    if not hashed_password:
        return False, None
    return password_hash.verify_and_update(raw_password, hashed_password)
