from postguard.schemas.detection import AttackCategory
from postguard.security.detectors.base import BaseDetector


class PrototypePollutionDetector(BaseDetector):
    category = AttackCategory.PROTOTYPE_POLLUTION
    PATTERNS = (
        r"__proto__",
        r"constructor\.prototype",
        r"prototype\.constructor",
        r"\[\"__proto__\"\]",
        r"\['__proto__'\]",
        r"\[\"constructor\"\]",
        r"\['constructor'\]",
        r"\[\"prototype\"\]",
        r"\['prototype'\]",
    )
