from postguard.schemas.detection import AttackCategory
from postguard.security.detectors.base import BaseDetector


class SSRFDetector(BaseDetector):
    category = AttackCategory.SSRF
    PATTERNS = (
        r"https?://localhost",
        r"https?://127\.0\.0\.1",
        r"https?://0\.0\.0\.0",
        r"https?://\[::1\]",
        r"https?://10\.",
        r"https?://172\.(1[6-9]|2[0-9]|3[01])\.",
        r"https?://192\.168\.",
        r"https?://169\.254\.",
        r"file://",
        r"ftp://",
        r"gopher://",
        r"dict://",
        r"ldap://",
    )
