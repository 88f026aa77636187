from postguard.schemas.detection import AttackCategory
from postguard.security.detectors.base import BaseDetector

_BINARIES = r"(ls|dir|cat|type|more|less|head|tail|pwd|whoami|id|uname|ps|netstat|ifconfig|ipconfig)"


class CommandInjectionDetector(BaseDetector):
    category = AttackCategory.COMMAND_INJECTION
    PATTERNS = (
        r";\s*" + _BINARIES,
        r"\|\s*" + _BINARIES,
        r"&&\s*" + _BINARIES,
        r"\$\(.*\)",
        r"`.*`",
        r"\|\s*nc\s",
        r"\|\s*netcat\s",
        r"\|\s*wget\s",
        r"\|\s*curl\s",
        r"\|\s*bash\s",
        r"\|\s*sh\s",
        r"\|\s*cmd\s",
        r"\|\s*powershell\s",
        r"exec\s*\(",
        r"system\s*\(",
        r"shell_exec\s*\(",
        r"passthru\s*\(",
        r"popen\s*\(",
    )
