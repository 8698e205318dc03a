# tannery/allocator.py
"""
Human-facing request numbers: 8 characters drawn uniformly from 0-9A-Z.

36^8 (~2.8e12) codes make a repeat vanishingly rare, so the lookup loop has
no retry bound. The lookup alone is racy under concurrent creation; the
request tables also carry a unique index and the engine re-allocates when
an insert hits it.
"""

import re
import secrets
import string

from tannery import monitoring
from tannery.repositories.base import Repository

ALPHABET = string.digits + string.ascii_uppercase
CODE_LENGTH = 8
CODE_PATTERN = re.compile(r"^[0-9A-Z]{8}$")


def generate_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(ALPHABET) for _ in range(length))


class RequestNumberAllocator:
    def __init__(self, repository: Repository, kind: str, generator=generate_code):
        self.repository = repository
        self.kind = kind
        self._generate = generator

    async def allocate(self) -> str:
        while True:
            code = self._generate()
            existing = await self.repository.find_one({"request_number": code})
            if existing is None:
                return code
            monitoring.inc_collision(self.kind, "lookup")
            monitoring.logger.info("Request number collision, regenerating", extra={"kind": self.kind})
