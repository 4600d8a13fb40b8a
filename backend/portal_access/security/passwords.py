import bcrypt

_dummy_hash: bytes | None = None


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, password_hash: str | None) -> bool:
    """Check ``password`` against a bcrypt hash.

    With no hash (unknown account) a throwaway hash is still checked so the
    response time does not reveal whether the account exists.
    """
    global _dummy_hash
    if not password_hash:
        if _dummy_hash is None:
            _dummy_hash = bcrypt.hashpw(b"portal-access-dummy", bcrypt.gensalt())
        bcrypt.checkpw(password.encode(), _dummy_hash)
        return False
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        return False
