from postguard.schemas.detection import AttackCategory
from postguard.security.detectors.base import BaseDetector


class LDAPInjectionDetector(BaseDetector):
    category = AttackCategory.LDAP_INJECTION
    PATTERNS = (
        r"\(\|\(",
        r"\)&\(",
        r"\*\)\(",
        r"\(&\(",
        r"\(!\(",
        r"\)\(\|",
        r"\)\(&",
        r"\)\(!",
        r"objectclass\s*=",
        r"cn\s*=",
        r"uid\s*=",
        r"ou\s*=",
        r"dc\s*=",
    )
