import json
import re
from typing import Any, Iterable, Optional
from urllib.parse import urlparse

SAFE_TEXT = re.compile(r"^[\w\s.,!?:'\"()\-]+$")


class FalsePositiveFilter:
    """Decides whether a detector hit on ``input`` deserves a critical log entry.

    Ordinary user content trips naive signatures often; hits on benign sources,
    long prose, plain text, JSON documents and URLs are treated as noise.
    """

    def __init__(self, benign_sources: Iterable[str], long_content_threshold: int = 500):
        self.benign_sources = frozenset(benign_sources)
        self.long_content_threshold = long_content_threshold

    def is_real_threat(self, input: Any, source: Optional[str] = None) -> bool:
        if not input or not isinstance(input, str):
            return False

        if source and source in self.benign_sources:
            return False

        if len(input) > self.long_content_threshold:
            return False

        return not self.is_safe_content(input.strip())

    def is_safe_content(self, text: str) -> bool:
        if SAFE_TEXT.match(text):
            return True

        if self._is_json(text):
            return True

        return self._is_url(text)

    def _is_json(self, text: str) -> bool:
        if not text or text[0] not in "{[":
            return False
        try:
            json.loads(text)
        except ValueError:
            return False
        return True

    def _is_url(self, text: str) -> bool:
        if any(c in text for c in " <>\"'`"):
            return False
        parsed = urlparse(text)
        return parsed.scheme in ("http", "https") and bool(parsed.netloc)
