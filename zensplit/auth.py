from __future__ import annotations

import logging
import secrets
import time
from typing import Callable, Dict, NamedTuple, Optional

from .engine import normalize_email

logger = logging.getLogger(__name__)


class IssuedCode(NamedTuple):
    code: str
    expires_at: float


class OtpStore:
    """
    One-time login codes keyed by normalized email.

    The clock is injected so expiry is checked against whatever time source the
    owner uses; an expired code is removed when it is read.
    """

    def __init__(
        self,
        ttl_seconds: float = 600,
        code_length: int = 6,
        clock: Callable[[], float] = time.monotonic,
        code_factory: Optional[Callable[[int], str]] = None,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        if code_length <= 0:
            raise ValueError("code_length must be positive")
        self.ttl_seconds = ttl_seconds
        self.code_length = code_length
        self._clock = clock
        self._code_factory = code_factory or _random_code
        self._codes: Dict[str, IssuedCode] = {}

    def __len__(self) -> int:
        return len(self._codes)

    def issue(self, email: str) -> str:
        key = normalize_email(email)
        code = self._code_factory(self.code_length)
        self._codes[key] = IssuedCode(code, self._clock() + self.ttl_seconds)
        logger.info("Issued login code for %s", key)
        return code

    def revoke(self, email: str) -> None:
        self._codes.pop(normalize_email(email), None)

    def verify(self, email: str, code: str) -> bool:
        key = normalize_email(email)
        issued = self._codes.get(key)
        if issued is None:
            return False

        if self._clock() >= issued.expires_at:
            del self._codes[key]
            logger.info("Login code for %s expired", key)
            return False

        if not secrets.compare_digest(issued.code, str(code)):
            return False

        del self._codes[key]
        return True

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, issued in self._codes.items() if now >= issued.expires_at]
        for key in expired:
            del self._codes[key]
        return len(expired)


def _random_code(length: int) -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(length))
