import logging

import bcrypt

logger = logging.getLogger(__name__)

# Set the maximum length for bcrypt
BCRYPT_MAX_LENGTH = 72


def hash_password(password: str) -> str:
    # bcrypt only looks at the first 72 bytes
    password_bytes = password.encode("utf-8")[:BCRYPT_MAX_LENGTH]
    hashed = bcrypt.hashpw(password_bytes, bcrypt.gensalt())
    return hashed.decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Check `plain` against a stored bcrypt hash; malformed hashes never match."""
    if not hashed or not isinstance(hashed, str) or not hashed.startswith("$2"):
        return False

    plain_bytes = plain.encode("utf-8")[:BCRYPT_MAX_LENGTH]
    hashed_bytes = hashed.encode("utf-8")

    # Reject obviously-bad salts/hashes early
    if len(hashed_bytes) < 20:
        logger.warning("Stored password hash is too short to be valid bcrypt hash")
        return False

    try:
        return bcrypt.checkpw(plain_bytes, hashed_bytes)
    except ValueError as ve:
        # bcrypt raises ValueError for invalid salt; treat as non-match
        logger.warning(f"bcrypt ValueError during password verify: {ve}")
        return False
