from postguard.schemas.detection import AttackCategory
from postguard.security.detectors.base import BaseDetector


class XXEDetector(BaseDetector):
    category = AttackCategory.XXE
    PATTERNS = (
        r"<!DOCTYPE[^>]*\[",
        r"<!ENTITY[^>]*SYSTEM",
        r"<!ENTITY[^>]*PUBLIC",
        r"&\w+;",
        r"<\?xml[^>]*encoding",
        r"SYSTEM\s+[\"'][^\"']*[\"']",
        r"PUBLIC\s+[\"'][^\"']*[\"']",
    )
