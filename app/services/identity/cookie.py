"""
Subscriber identity cookie with signed serialization.
Uses itsdangerous for tamper-proof payloads; the MSISDN is re-validated on every read.
"""
import logging

from fastapi import Request, Response
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from app.core.config import settings
from app.utils.msisdn import is_normalized_msisdn

logger = logging.getLogger(__name__)

COOKIE_VERSION = 1


class IdentityCookieCodec:
    def __init__(self, secret: str | None = None, max_age: int | None = None) -> None:
        self.serializer = URLSafeTimedSerializer(
            secret or settings.identity_cookie_secret,
            salt="subscriber-identity",
        )
        self.max_age = max_age or settings.identity_cookie_max_age

    def encode(self, msisdn: str) -> str:
        return self.serializer.dumps({"v": COOKIE_VERSION, "msisdn": msisdn})

    def decode(self, raw: str | None) -> str | None:
        """MSISDN or None. Bad signature, expiry, unknown version and malformed numbers all read as 'no identity'."""
        if not raw:
            return None
        try:
            data = self.serializer.loads(raw, max_age=self.max_age)
        except SignatureExpired:
            return None
        except BadSignature:
            logger.warning("identity_cookie_bad_signature")
            return None
        if not isinstance(data, dict) or data.get("v") != COOKIE_VERSION:
            return None
        msisdn = data.get("msisdn")
        return msisdn if is_normalized_msisdn(msisdn) else None


codec = IdentityCookieCodec()


def read_identity(request: Request) -> str | None:
    return codec.decode(request.cookies.get(settings.identity_cookie_name))


def set_identity_cookie(response: Response, msisdn: str) -> None:
    response.set_cookie(
        key=settings.identity_cookie_name,
        value=codec.encode(msisdn),
        max_age=settings.identity_cookie_max_age,
        httponly=True,
        secure=settings.identity_cookie_secure,
        samesite=settings.identity_cookie_samesite,
        path="/",
    )


def clear_identity_cookie(response: Response) -> None:
    response.delete_cookie(
        key=settings.identity_cookie_name,
        path="/",
        httponly=True,
        secure=settings.identity_cookie_secure,
        samesite=settings.identity_cookie_samesite,
    )
