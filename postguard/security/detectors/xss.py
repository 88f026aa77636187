from postguard.schemas.detection import AttackCategory
from postguard.security.detectors.base import BaseDetector


class XSSDetector(BaseDetector):
    category = AttackCategory.XSS
    PATTERNS = (
        r"<script[^>]*>.*?</script>",
        r"<iframe[^>]*>.*?</iframe>",
        r"<object[^>]*>.*?</object>",
        r"<embed[^>]*>",
        r"<link[^>]*>",
        r"<meta[^>]*>",
        r"javascript\s*:",
        r"vbscript\s*:",
        r"data\s*:",
        r"on\w+\s*=",
        r"<img[^>]*onerror[^>]*>",
        r"<svg[^>]*onload[^>]*>",
        r"eval\s*\(",
        r"expression\s*\(",
        r"setTimeout\s*\(",
        r"setInterval\s*\(",
        r"document\s*\.\s*write",
        r"document\s*\.\s*cookie",
        r"window\s*\.\s*location",
        r"alert\s*\(",
        r"confirm\s*\(",
        r"prompt\s*\(",
    )
