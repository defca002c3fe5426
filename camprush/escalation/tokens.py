"""
Single-use tokens behind CAPTCHA-assist and approval links
"""
import asyncio
import logging
import secrets
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Dict
from pydantic import BaseModel

from ..common.models import utcnow

logger = logging.getLogger(__name__)


class TokenExpiredError(Exception):
    """Raised when a token is presented after its expiry"""
    pass


class TokenInvalidError(Exception):
    """Raised when a token is unknown or already used"""
    pass


class TokenPurpose(str, Enum):
    CAPTCHA = "captcha"
    APPROVAL = "approval"


class ApprovalToken(BaseModel):
    token: str
    purpose: TokenPurpose
    subject_id: str
    issued_at: datetime
    expires_at: datetime
    consumed: bool = False

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Expiry is decided when the token is read, never by a timer"""
        return (now or utcnow()) >= self.expires_at


class TokenVault:
    """Issues tokens and redeems each at most once"""

    def __init__(self, ttl_minutes: int = 15):
        self.ttl = timedelta(minutes=ttl_minutes)
        self._tokens: Dict[str, ApprovalToken] = {}
        self._lock = asyncio.Lock()

    async def issue(
        self,
        purpose: TokenPurpose,
        subject_id: str,
        ttl: Optional[timedelta] = None,
        now: Optional[datetime] = None
    ) -> ApprovalToken:
        now = now or utcnow()
        ttl = self.ttl if ttl is None else max(ttl, timedelta(0))
        token = ApprovalToken(
            token=secrets.token_urlsafe(32),
            purpose=purpose,
            subject_id=subject_id,
            issued_at=now,
            expires_at=now + ttl,
        )
        async with self._lock:
            self._purge(now)
            self._tokens[token.token] = token
        logger.debug(f"Issued {purpose.value} token for {subject_id}")
        return token

    def _purge(self, now: datetime):
        # Recently expired tokens stay so they still report as expired
        cutoff = now - self.ttl
        dead = [
            value for value, token in self._tokens.items()
            if token.consumed or token.is_expired(cutoff)
        ]
        for value in dead:
            del self._tokens[value]

    def __len__(self) -> int:
        return len(self._tokens)

    def _check(self, value: str, purpose: Optional[TokenPurpose], now: datetime) -> ApprovalToken:
        token = self._tokens.get(value)
        if token is None or token.consumed:
            raise TokenInvalidError("Token is unknown or has already been used")
        if purpose and token.purpose != purpose:
            raise TokenInvalidError(f"Token is not valid for {purpose.value}")
        if token.is_expired(now):
            raise TokenExpiredError(f"Token for {token.subject_id} expired at {token.expires_at.isoformat()}")
        return token

    async def verify(
        self,
        value: str,
        purpose: Optional[TokenPurpose] = None,
        now: Optional[datetime] = None
    ) -> ApprovalToken:
        """Return the token if it can still be redeemed"""
        async with self._lock:
            return self._check(value, purpose, now or utcnow())

    async def consume(
        self,
        value: str,
        purpose: Optional[TokenPurpose] = None,
        now: Optional[datetime] = None
    ) -> ApprovalToken:
        """Redeem a token; a second redemption raises TokenInvalidError"""
        async with self._lock:
            token = self._check(value, purpose, now or utcnow())
            token.consumed = True
        logger.info(f"Redeemed {token.purpose.value} token for {token.subject_id}")
        return token
