from postguard.models.record import ProtectionLock, ProtectionRecord

__all__ = ["ProtectionLock", "ProtectionRecord"]
