from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import threading
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from results_portal.config import settings
from results_portal.core.errors import AuthenticationError
from results_portal.core.time_provider import TimeProvider, default_time_provider
from results_portal.models import User


_REVOKED_TOKENS: set[str] = set()
_TOKENS_LOCK = threading.RLock()
logger = logging.getLogger(__name__)

_INVALID_CREDENTIALS = 'Invalid username or password'
_PBKDF2_ITERATIONS = 120000


def normalize_username(username: str | None) -> str:
    return str(username or '').strip().lower()


def hash_password(password: str) -> str:
    if len(password or '') < settings.auth_min_password_length:
        raise ValueError(f'Password must be at least {settings.auth_min_password_length} characters')
    salt = secrets.token_hex(16)
    derived = hashlib.pbkdf2_hmac('sha256', password.encode('utf-8'), salt.encode('utf-8'), _PBKDF2_ITERATIONS)
    return f'pbkdf2_sha256${_PBKDF2_ITERATIONS}${salt}${derived.hex()}'


def verify_password(password: str, password_hash: str) -> bool:
    try:
        algo, iter_raw, salt, digest_hex = (password_hash or '').split('$', 3)
    except ValueError:
        return False
    if algo != 'pbkdf2_sha256' or not iter_raw.isdigit():
        return False
    derived = hashlib.pbkdf2_hmac('sha256', (password or '').encode('utf-8'), salt.encode('utf-8'), int(iter_raw)).hex()
    return hmac.compare_digest(derived, digest_hex)


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode('ascii').rstrip('=')


def _b64url_decode(value: str) -> bytes:
    padding = '=' * (-len(value) % 4)
    return base64.urlsafe_b64decode((value + padding).encode('ascii'))


def _encode_jwt(payload: dict) -> str:
    header = {'alg': 'HS256', 'typ': 'JWT'}
    header_part = _b64url_encode(json.dumps(header, separators=(',', ':')).encode('utf-8'))
    payload_part = _b64url_encode(json.dumps(payload, separators=(',', ':')).encode('utf-8'))
    signing_input = f'{header_part}.{payload_part}'.encode('ascii')
    signature = hmac.new(settings.auth_secret.encode('utf-8'), signing_input, hashlib.sha256).digest()
    return f'{header_part}.{payload_part}.{_b64url_encode(signature)}'


def _decode_jwt(token: str) -> dict | None:
    try:
        header_part, payload_part, signature_part = token.split('.')
    except ValueError:
        return None

    signing_input = f'{header_part}.{payload_part}'.encode('ascii', errors='replace')
    expected_signature = hmac.new(settings.auth_secret.encode('utf-8'), signing_input, hashlib.sha256).digest()
    try:
        provided_signature = _b64url_decode(signature_part)
    except (ValueError, UnicodeEncodeError):
        return None
    if not hmac.compare_digest(provided_signature, expected_signature):
        return None

    try:
        payload = json.loads(_b64url_decode(payload_part).decode('utf-8'))
    except (ValueError, UnicodeDecodeError):
        return None

    if not isinstance(payload, dict):
        return None
    return payload


def identity_payload(user: User) -> dict:
    return {
        'id': user.id,
        'username': user.username,
        'full_name': user.full_name or '',
        'role': user.role,
        'district_id': user.district_id,
        'mandal_id': user.mandal_id,
        'school_id': user.school_id,
        'district_name': user.district.name if user.district else None,
        'mandal_name': user.mandal.name if user.mandal else None,
        'school_name': user.school.name if user.school else None,
    }


def issue_session_token(user: User, *, time_provider: TimeProvider = default_time_provider) -> dict:
    issued_at = time_provider.utc_timestamp()
    expires_at = issued_at + int(settings.auth_session_expiry_hours) * 3600
    token = _encode_jwt(
        {
            'sub': user.id,
            'username': user.username,
            'role': user.role,
            'district_id': user.district_id,
            'mandal_id': user.mandal_id,
            'school_id': user.school_id,
            'iat': issued_at,
            'exp': expires_at,
        }
    )
    return {
        'token': token,
        'user': identity_payload(user),
        'expires_at': datetime.fromtimestamp(expires_at, tz=timezone.utc).isoformat(),
    }


def login(db: Session, username: str, password: str, *, time_provider: TimeProvider = default_time_provider) -> dict:
    clean_username = normalize_username(username)
    user = db.query(User).filter(User.username == clean_username).first()
    # Same message for unknown user and wrong password so usernames cannot be probed.
    if not user or not verify_password(password, user.password_hash):
        logger.warning('auth_login_failed username=%s', clean_username)
        raise AuthenticationError(_INVALID_CREDENTIALS)
    payload = issue_session_token(user, time_provider=time_provider)
    logger.info('auth_login_success user_id=%s role=%s', user.id, user.role)
    return payload


def validate_session_token(token: str | None, *, time_provider: TimeProvider = default_time_provider) -> dict | None:
    if not token:
        return None
    with _TOKENS_LOCK:
        if token in _REVOKED_TOKENS:
            return None

    payload = _decode_jwt(token)
    if not payload:
        return None

    role = payload.get('role')
    user_id = payload.get('sub')
    expires_at = payload.get('exp')
    if not role or user_id is None or not isinstance(expires_at, int):
        return None
    if expires_at <= time_provider.utc_timestamp():
        return None

    return {
        'user_id': user_id,
        'username': payload.get('username') or '',
        'role': role,
        'district_id': payload.get('district_id'),
        'mandal_id': payload.get('mandal_id'),
        'school_id': payload.get('school_id'),
        'expires_at': expires_at,
    }


def clear_session_token(token: str | None) -> None:
    if not token:
        return
    with _TOKENS_LOCK:
        _REVOKED_TOKENS.add(token)
