from postguard.schemas.detection import AttackCategory
from postguard.security.detectors.base import BaseDetector


class PathTraversalDetector(BaseDetector):
    category = AttackCategory.PATH_TRAVERSAL
    PATTERNS = (
        r"\.\./",
        r"\.\.\\",
        r"%2e%2e%2f",
        r"%2e%2e%5c",
        r"\.\.%2f",
        r"\.\.%5c",
        r"%2e%2e/",
        r"%2e%2e\\",
        r"/etc/passwd",
        r"/etc/shadow",
        r"/windows/system32",
        r"/boot\.ini",
        r"/proc/self/environ",
    )
