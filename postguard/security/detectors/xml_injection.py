from postguard.schemas.detection import AttackCategory
from postguard.security.detectors.base import BaseDetector


class XMLInjectionDetector(BaseDetector):
    category = AttackCategory.XML_INJECTION
    PATTERNS = (
        r"<!DOCTYPE[^>]*>",
        r"<!ENTITY[^>]*>",
        r"<\?xml[^>]*>",
        r"&\w+;",
        r"<!\[CDATA\[.*\]\]>",
        r"<!--.*-->",
        r"<script[^>]*>.*?</script>",
        r"<\w+[^>]*xmlns[^>]*>",
    )
