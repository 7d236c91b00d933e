import os
from datetime import timedelta

from dotenv import load_dotenv
from jose import JWTError, jwt

from src.seatledger.utils.timeutils import utcnow

load_dotenv()

# JWT settings
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "change-me-in-production")
ALGORITHM = "HS256"

# Unset, empty, non-numeric or non-positive -> tokens carry no `exp` claim
env_val = os.getenv("JWT_ACCESS_TOKEN_EXPIRE_HOURS")
if env_val is None or env_val == "":
    ACCESS_TOKEN_EXPIRE_HOURS = None
else:
    try:
        ACCESS_TOKEN_EXPIRE_HOURS = int(env_val)
    except ValueError:
        ACCESS_TOKEN_EXPIRE_HOURS = None


def create_access_token(data: dict):
    """Create a JWT token. Tokens only expire when
    `JWT_ACCESS_TOKEN_EXPIRE_HOURS` is a positive integer.
    """
    to_encode = data.copy()
    if ACCESS_TOKEN_EXPIRE_HOURS is not None and ACCESS_TOKEN_EXPIRE_HOURS > 0:
        expire = utcnow() + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)
        to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str):
    """Verify and decode a JWT token; None if invalid or expired."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        return None
