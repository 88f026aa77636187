from postguard.schemas.detection import AttackCategory
from postguard.security.detectors.base import BaseDetector


class NoSQLInjectionDetector(BaseDetector):
    category = AttackCategory.NOSQL_INJECTION
    PATTERNS = (
        r"\$where",
        r"\$ne",
        r"\$gt",
        r"\$lt",
        r"\$gte",
        r"\$lte",
        r"\$in",
        r"\$nin",
        r"\$regex",
        r"\$exists",
        r"\$type",
        r"\$mod",
        r"\$all",
        r"\$size",
        r"\$elemMatch",
        r"\$not",
        r"\$or",
        r"\$and",
        r"\$nor",
        r"javascript\s*:",
        r"function\s*\(",
        r"this\.",
    )
