import html
import re
import unicodedata
from html.parser import HTMLParser
from typing import Any, Optional, Union

from pydantic import BaseModel, Field

from postguard.core.logger import logger
from postguard.schemas.detection import ValidationContext, ValidationResult
from postguard.schemas.security_event import EventCategory, Severity
from postguard.services.event_logger import EventLog

SCRIPT_TAG = r"<script"
JS_URI = r"javascript:"
EVENT_HANDLER = r"\bon\w+\s*="
ANY_TAG = r"<.*?>"

FORBIDDEN_CONTENT_TAGS = frozenset({"script", "style", "iframe", "object", "embed"})
FORBIDDEN_TAGS = FORBIDDEN_CONTENT_TAGS | {"form", "input", "button"}
VOID_TAGS = frozenset({"area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "track", "wbr"})
URL_ATTRIBUTES = frozenset({"href", "src"})
UNSAFE_URL_SCHEMES = ("javascript:", "vbscript:", "data:")

RESERVED_FILE_NAMES = frozenset(
    ["CON", "PRN", "AUX", "NUL"]
    + [f"COM{i}" for i in range(1, 10)]
    + [f"LPT{i}" for i in range(1, 10)]
)

EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
PHONE_RE = re.compile(r"^[\d\s()\-+]{8,20}$")
FILE_NAME_RE = re.compile(r"^[a-zA-Z0-9\-_.]+$")
URL_RE = re.compile(r"^https?://[^\s<>\"{}|\\^`\[\]]+$", re.IGNORECASE)

SEARCH_SQL_PATTERNS = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"union\s+select",
    r"drop\s+table",
    r"insert\s+into",
    r"delete\s+from",
    r"update\s+.*set",
    r"exec\s*\(",
    r"xp_cmdshell",
    r"sp_executesql",
))

STRICT_COMMAND_PATTERNS = tuple(re.compile(p, re.IGNORECASE) for p in (
    r"\brm\s+-rf\b",
    r"\bsudo\s+",
    r"\bchmod\s+",
    r"\bchown\s+",
    r"\bpasswd\s+",
    r"\bsu\s+",
    r"\bkill\s+",
    r"\bkillall\s+",
))


class ContextConfig(BaseModel):
    max_length: int = Field(gt=0)
    allowed_chars: Optional[str] = None
    forbidden_patterns: list[str] = Field(default_factory=list)
    sanitize_html: bool = True
    preserve_formatting: bool = False
    allowed_tags: list[str] = Field(default_factory=list)
    allowed_attributes: list[str] = Field(default_factory=list)
    strict_mode: bool = False


TITLE_CHARS = r"[a-zA-ZÀ-ÿ0-9\s\-.!?:;,()]"

DEFAULT_CONTEXT_CONFIGS: dict[ValidationContext, ContextConfig] = {
    ValidationContext.ARTICLE_TITLE: ContextConfig(
        max_length=200,
        allowed_chars=TITLE_CHARS,
        forbidden_patterns=[SCRIPT_TAG, JS_URI, EVENT_HANDLER],
    ),
    ValidationContext.ARTICLE_CONTENT: ContextConfig(
        max_length=50_000,
        forbidden_patterns=[SCRIPT_TAG, JS_URI, EVENT_HANDLER, r"<iframe", r"<object", r"<embed"],
        preserve_formatting=True,
        allowed_tags=[
            "p", "br", "strong", "em", "u", "h1", "h2", "h3", "h4", "h5", "h6",
            "ul", "ol", "li", "blockquote", "a", "img",
        ],
        allowed_attributes=["class", "href", "src", "alt", "title"],
    ),
    ValidationContext.USER_NAME: ContextConfig(
        max_length=100,
        allowed_chars=r"[a-zA-ZÀ-ÿ0-9\s\-.]",
        forbidden_patterns=[ANY_TAG, JS_URI, r"admin", r"root", r"system"],
    ),
    ValidationContext.EMAIL: ContextConfig(
        max_length=254,
        allowed_chars=r"[a-zA-Z0-9._%+@-]",
        forbidden_patterns=[ANY_TAG, JS_URI, r"\s"],
    ),
    ValidationContext.PHONE: ContextConfig(
        max_length=20,
        allowed_chars=r"[\d\s()\-+]",
        forbidden_patterns=[ANY_TAG, JS_URI, r"[a-zA-Z]"],
    ),
    ValidationContext.MESSAGE: ContextConfig(
        max_length=5000,
        forbidden_patterns=[SCRIPT_TAG, JS_URI, EVENT_HANDLER, r"<iframe"],
        preserve_formatting=True,
        allowed_tags=["p", "br", "strong", "em"],
    ),
    ValidationContext.COMMENT: ContextConfig(
        max_length=1000,
        forbidden_patterns=[SCRIPT_TAG, JS_URI, EVENT_HANDLER, r"<iframe", r"fuck", r"shit", r"damn"],
    ),
    ValidationContext.SEARCH_QUERY: ContextConfig(
        max_length=200,
        allowed_chars=TITLE_CHARS,
        forbidden_patterns=[ANY_TAG, JS_URI, r"union\s+select", r"drop\s+table", r"insert\s+into"],
    ),
    ValidationContext.URL: ContextConfig(
        max_length=2048,
        allowed_chars=r"[^\s<>\"{}|\\^`\[\]]",
        forbidden_patterns=[JS_URI, r"data:", r"vbscript:", r"file:", r"ftp:"],
        sanitize_html=False,
    ),
    ValidationContext.FILE_NAME: ContextConfig(
        max_length=255,
        allowed_chars=r"[a-zA-Z0-9\-_.]",
        forbidden_patterns=[r"\.\.", r"/", r"\\", r"\|", r"<", r">", r":", r"\*", r"\?", r"\""],
        sanitize_html=False,
    ),
    ValidationContext.ADMIN_INPUT: ContextConfig(
        max_length=10_000,
        forbidden_patterns=[SCRIPT_TAG, JS_URI, EVENT_HANDLER, r"eval\s*\(", r"exec\s*\(", r"system\s*\("],
        preserve_formatting=True,
        allowed_tags=["p", "br", "strong", "em", "ul", "ol", "li"],
        strict_mode=True,
    ),
}


class HtmlSanitizer(HTMLParser):
    """Whitelist HTML filter.

    Tags outside ``allowed_tags`` are removed; their text survives only when
    ``keep_content`` is set. Script-like elements lose their content always.
    """

    def __init__(self, allowed_tags: list[str], allowed_attributes: list[str], keep_content: bool):
        super().__init__(convert_charrefs=True)
        self.allowed_tags = {t.lower() for t in allowed_tags} - FORBIDDEN_TAGS
        self.allowed_attributes = {a.lower() for a in allowed_attributes}
        self.keep_content = keep_content
        self._parts: list[str] = []
        self._stack: list[bool] = []
        self._forbidden_depth = 0

    def sanitize(self, text: str) -> str:
        self.feed(text)
        self.close()
        return "".join(self._parts)

    def _suppressed(self) -> bool:
        if self._forbidden_depth:
            return True
        return not self.keep_content and any(not kept for kept in self._stack)

    def _attributes(self, attrs: list[tuple[str, Optional[str]]]) -> str:
        rendered = []
        for name, value in attrs:
            name = name.lower()
            if name.startswith("on") or name not in self.allowed_attributes:
                continue
            value = value or ""
            if name in URL_ATTRIBUTES and value.strip().lower().startswith(UNSAFE_URL_SCHEMES):
                continue
            rendered.append(f' {name}="{html.escape(value, quote=True)}"')
        return "".join(rendered)

    def handle_starttag(self, tag, attrs):
        if tag in FORBIDDEN_CONTENT_TAGS:
            if tag not in VOID_TAGS:
                self._forbidden_depth += 1
            return

        allowed = tag in self.allowed_tags
        if allowed and not self._suppressed():
            self._parts.append(f"<{tag}{self._attributes(attrs)}>")
        if tag not in VOID_TAGS:
            self._stack.append(allowed)

    def handle_startendtag(self, tag, attrs):
        if tag in FORBIDDEN_CONTENT_TAGS:
            return
        if tag in self.allowed_tags and not self._suppressed():
            self._parts.append(f"<{tag}{self._attributes(attrs)} />")

    def handle_endtag(self, tag):
        if tag in FORBIDDEN_CONTENT_TAGS and tag not in VOID_TAGS:
            self._forbidden_depth = max(0, self._forbidden_depth - 1)
            return
        if tag in VOID_TAGS:
            return

        if self._stack:
            self._stack.pop()
        if tag in self.allowed_tags and not self._suppressed():
            self._parts.append(f"</{tag}>")

    def handle_data(self, data):
        if not self._suppressed():
            self._parts.append(html.escape(data, quote=False))


def normalize_input(value: str) -> str:
    value = unicodedata.normalize("NFKC", value).strip()
    return value.replace("\r\n", "\n").replace("\r", "\n").replace("\x00", "")


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_RE.match(value)) and len(value) <= 254


def is_valid_phone(value: str) -> bool:
    return bool(PHONE_RE.match(value))


def is_valid_url(value: str) -> bool:
    return bool(URL_RE.match(value))


def is_valid_file_name(value: str) -> bool:
    return (
        0 < len(value) <= 255
        and bool(FILE_NAME_RE.match(value))
        and value.upper() not in RESERVED_FILE_NAMES
    )


def contains_sql_injection(value: str) -> bool:
    return any(p.search(value) for p in SEARCH_SQL_PATTERNS)


class InputValidator:
    """Context-aware validation and sanitization of user supplied text."""

    def __init__(self, event_log: EventLog, configs: Optional[dict[ValidationContext, ContextConfig]] = None):
        self.event_log = event_log
        source = DEFAULT_CONTEXT_CONFIGS if configs is None else configs
        self.configs = {context: config.model_copy(deep=True) for context, config in source.items()}

    def validate(
        self,
        value: Any,
        context: Union[ValidationContext, str],
        actor_id: Optional[str] = None,
        overrides: Optional[dict[str, Any]] = None,
    ) -> ValidationResult:
        context = ValidationContext(context)
        result = ValidationResult(
            context=context,
            original_length=len(value) if isinstance(value, str) else 0,
        )

        if not value or not isinstance(value, str):
            result.is_valid = False
            result.errors.append("Input is empty or not a string")
            self.event_log.log_validation_error(context.value, str(value or ""), "empty input", actor_id)
            return result

        try:
            config = self.configs[context]
            if overrides:
                config = config.model_copy(update=overrides)
            self._run(value, context, config, result, actor_id)
        except Exception as e:
            logger.error("input_validation_error", context=context.value, error=str(e))
            result.is_valid = False
            result.degraded = True
            result.errors.append("Internal validation error")
            self.event_log.log_event(
                EventCategory.VALIDATION_ERROR,
                Severity.ERROR,
                "Internal validation error",
                {"context": context.value, "error": str(e)},
                actor_id
            )

        return result

    def _run(
        self,
        value: str,
        context: ValidationContext,
        config: ContextConfig,
        result: ValidationResult,
        actor_id: Optional[str],
    ) -> None:
        sanitized = normalize_input(value)

        if len(sanitized) > config.max_length:
            result.warnings.append(f"Input truncated from {len(sanitized)} to {config.max_length} characters")
            sanitized = sanitized[: config.max_length]

        forbidden = [p for p in config.forbidden_patterns if re.search(p, sanitized, re.IGNORECASE)]
        if forbidden:
            result.is_valid = False
            result.errors.append(f"Forbidden patterns found: {', '.join(forbidden)}")
            self.event_log.log_detector_event(
                EventCategory.SUSPICIOUS_INPUT,
                f"Forbidden patterns in context {context.value}",
                value,
                source=context.value,
                details={"patterns": forbidden, "context": context.value},
                actor_id=actor_id
            )

        if config.allowed_chars:
            allowed = re.compile(config.allowed_chars)
            stripped = "".join(c for c in sanitized if allowed.fullmatch(c))
            if stripped != sanitized:
                result.warnings.append("Disallowed characters removed")
                sanitized = stripped

        if config.sanitize_html:
            cleaned = HtmlSanitizer(
                config.allowed_tags,
                config.allowed_attributes,
                config.preserve_formatting
            ).sanitize(sanitized)
            if cleaned != sanitized:
                result.warnings.append("HTML content sanitized")
                sanitized = cleaned

        context_errors = self._validate_by_context(sanitized, context)
        if context_errors:
            result.is_valid = False
            result.errors.extend(context_errors)
            for error in context_errors:
                self.event_log.log_validation_error(context.value, value, error, actor_id)

        if config.strict_mode and any(p.search(sanitized) for p in STRICT_COMMAND_PATTERNS):
            result.is_valid = False
            result.errors.append("System command detected")

        result.sanitized_value = sanitized
        result.sanitized_length = len(sanitized)

        if value != sanitized or result.errors:
            self.event_log.log_sanitization_triggered(
                value,
                sanitized,
                actor_id,
                context=context.value,
                errors=list(result.errors),
                warnings=list(result.warnings)
            )

    def _validate_by_context(self, value: str, context: ValidationContext) -> list[str]:
        if context == ValidationContext.EMAIL and not is_valid_email(value):
            return ["Invalid email format"]
        if context == ValidationContext.PHONE and not is_valid_phone(value):
            return ["Invalid phone format"]
        if context == ValidationContext.URL and not is_valid_url(value):
            return ["Invalid URL"]
        if context == ValidationContext.FILE_NAME and not is_valid_file_name(value):
            return ["Invalid file name"]
        if context == ValidationContext.SEARCH_QUERY and contains_sql_injection(value):
            return ["Search query contains suspicious patterns"]
        return []

    def validate_batch(
        self,
        inputs: list[tuple[Any, Union[ValidationContext, str]]],
        actor_id: Optional[str] = None,
    ) -> list[ValidationResult]:
        return [self.validate(value, context, actor_id) for value, context in inputs]

    def get_context_config(self, context: Union[ValidationContext, str]) -> ContextConfig:
        return self.configs[ValidationContext(context)].model_copy(deep=True)

    def update_context_config(self, context: Union[ValidationContext, str], **changes) -> ContextConfig:
        context = ValidationContext(context)
        updated = ContextConfig.model_validate({**self.configs[context].model_dump(), **changes})
        self.configs[context] = updated

        self.event_log.log_event(
            EventCategory.CONFIG_CHANGE,
            Severity.INFO,
            f"Validation config updated for {context.value}",
            {"context": context.value, "fields": sorted(changes)}
        )
        return updated
