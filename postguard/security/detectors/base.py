import re
from abc import ABC
from typing import Optional

from postguard.schemas.detection import AttackCategory


class BaseDetector(ABC):
    """Signature set for a single attack category.

    Subclasses declare ``category`` and ``PATTERNS``; each pattern carries an
    implicit weight of ``1 / len(PATTERNS)`` when confidence is computed.
    """

    category: AttackCategory
    PATTERNS: tuple[str, ...] = ()

    def __init__(self):
        self.signatures: tuple[re.Pattern, ...] = tuple(
            re.compile(pattern, re.IGNORECASE) for pattern in self.PATTERNS
        )

    def __len__(self) -> int:
        return len(self.signatures)

    def match(self, payload: str) -> list[str]:
        return [signature.pattern for signature in self.signatures if signature.search(payload)]

    def detect(self, payload: str) -> tuple[bool, Optional[str]]:
        if not payload:
            return False, None

        matched = self.match(payload)
        if matched:
            return True, f"{self.category.value} pattern detected: {matched[0]}"

        return False, None
