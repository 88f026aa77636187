from postguard.security.attack_detector import AttackDetector
from postguard.security.engine import ProtectionEngine
from postguard.security.input_validator import InputValidator
from postguard.security.integrity_monitor import IntegrityMonitor
from postguard.security.rate_limiter import RateLimiter

__all__ = [
    "AttackDetector",
    "InputValidator",
    "IntegrityMonitor",
    "ProtectionEngine",
    "RateLimiter",
]
