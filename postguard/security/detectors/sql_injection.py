from postguard.schemas.detection import AttackCategory
from postguard.security.detectors.base import BaseDetector


class SQLInjectionDetector(BaseDetector):
    category = AttackCategory.SQL_INJECTION
    PATTERNS = (
        r"(\b(union|select|insert|update|delete|drop|create|alter|exec|execute)\b.*\b(from|into|table|database|schema)\b)",
        r"(\b(or|and)\b\s*\d+\s*=\s*\d+)",
        r"(\b(or|and)\b\s*['\"].*['\"])",
        r"(union\s+select)",
        r"(drop\s+table)",
        r"(insert\s+into)",
        r"(delete\s+from)",
        r"(update\s+.*set)",
        r"(exec\s*\()",
        r"(xp_cmdshell)",
        r"(sp_executesql)",
        r"('.*';\s*(drop|insert|update|delete))",
        r"(/\*.*\*/)",
        r"(-{2,})",
        r"(0x[0-9a-f]+)",
        r"(char\s*\(\s*\d+\s*\))",
        r"(ascii\s*\(\s*.*\s*\))",
        r"(substring\s*\(\s*.*\s*,\s*\d+\s*,\s*\d+\s*\))",
    )
