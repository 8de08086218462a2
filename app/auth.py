import hmac
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from urllib.parse import urlencode

from dotenv import load_dotenv
from fastapi import Cookie, Header, HTTPException
from jose import JOSEError, jwt

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

ADMIN_SESSION_COOKIE = "admin_session"
ADMIN_LOGIN_PATH = "/admin/login"
ADMIN_SESSION_HOURS = 12


def verify_token(authorization: str = Header(...)):
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("unsupported scheme")
        return jwt.decode(token, os.getenv("JWT_SECRET"), algorithms=["HS256"])
    except (ValueError, JOSEError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")


def check_admin_credentials(email: str, password: str) -> bool:
    expected_email = os.getenv("ADMIN_EMAIL")
    expected_password = os.getenv("ADMIN_PASSWORD")
    if not expected_email or not expected_password:
        return False
    return (
        hmac.compare_digest(email, expected_email)
        and hmac.compare_digest(password, expected_password)
    )


def create_admin_session(email: str) -> str:
    expires = datetime.now(timezone.utc) + timedelta(hours=ADMIN_SESSION_HOURS)
    claims = {"sub": email, "role": "admin", "exp": expires}
    return jwt.encode(claims, os.getenv("JWT_SECRET"), algorithm="HS256")


def require_admin(admin_session: str = Cookie(None)):
    if not admin_session:
        raise HTTPException(status_code=401, detail="Admin session required")
    try:
        claims = jwt.decode(admin_session, os.getenv("JWT_SECRET"), algorithms=["HS256"])
    except JOSEError:
        raise HTTPException(status_code=401, detail="Admin session required")
    if claims.get("role") != "admin":
        raise HTTPException(status_code=401, detail="Admin session required")
    return claims


def admin_login_redirect(path: str, cookies) -> str:
    """Login URL for an admin page requested without a session, else empty."""
    if not (path == "/admin" or path.startswith("/admin/")):
        return ""
    if path.rstrip("/") == ADMIN_LOGIN_PATH:
        return ""
    if cookies.get(ADMIN_SESSION_COOKIE):
        return ""
    return f"{ADMIN_LOGIN_PATH}?{urlencode({'redirect': path})}"
