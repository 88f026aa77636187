import enum
from pydantic import BaseModel, Field


class AttackCategory(str, enum.Enum):
    SQL_INJECTION = "sql_injection"
    XSS = "xss"
    PATH_TRAVERSAL = "path_traversal"
    COMMAND_INJECTION = "command_injection"
    LDAP_INJECTION = "ldap_injection"
    XML_INJECTION = "xml_injection"
    NOSQL_INJECTION = "nosql_injection"
    SSRF = "ssrf"
    XXE = "xxe"
    PROTOTYPE_POLLUTION = "prototype_pollution"
    BRUTE_FORCE = "brute_force"
    ENUMERATION = "enumeration"
    CSRF = "csrf"
    DESERIALIZATION = "deserialization"


class DetectionVerdict(BaseModel):
    is_attack: bool = False
    categories: list[AttackCategory] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    matched_patterns: list[str] = Field(default_factory=list)
    should_block: bool = False
    recommendation: str = "Input is safe"
    degraded: bool = False


class AttackConfig(BaseModel):
    max_attempts: int = Field(ge=1)
    time_window_ms: int = Field(ge=0)
    block_duration_ms: int = Field(gt=0)
    escalation_factor: float = Field(ge=1.0)


class AttackAttempt(BaseModel):
    count: int = 0
    first_attempt: int
    last_attempt: int
    escalation_level: int = 1


class AttackBlock(BaseModel):
    actor_id: str
    category: AttackCategory
    blocked_until: int
    attempt_count: int
    escalation_level: int


class AttackStats(BaseModel):
    total_attempts: int
    attacks_by_category: dict[str, int]
    active_blocks: int
    top_categories: list[dict[str, int | str]]


class ValidationContext(str, enum.Enum):
    ARTICLE_TITLE = "article_title"
    ARTICLE_CONTENT = "article_content"
    USER_NAME = "user_name"
    EMAIL = "email"
    PHONE = "phone"
    MESSAGE = "message"
    COMMENT = "comment"
    SEARCH_QUERY = "search_query"
    URL = "url"
    FILE_NAME = "file_name"
    ADMIN_INPUT = "admin_input"


class ValidationResult(BaseModel):
    is_valid: bool = True
    sanitized_value: str = ""
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    original_length: int = 0
    sanitized_length: int = 0
    context: ValidationContext
    degraded: bool = False
