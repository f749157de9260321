import re
from dataclasses import dataclass

MIN_CONTENT_LENGTH = 200
MIN_WORD_COUNT = 300
MAX_CONTENT_LENGTH = 100_000
TRUNCATION_MARKER = "\n\n[Content truncated]"

PAYWALL_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"subscribe\s+to\s+read",
        r"log\s+in\s+to\s+read",
        r"sign\s+in\s+to\s+continue",
        r"members-only",
        r"paywall",
        r"premium\s+content",
        r"you've\s+reached\s+your\s+article\s+limit",
        r"free\s+articles\s+remaining",
        r"subscribe\s+now\s+for\s+full\s+access",
        r"unlock\s+this\s+article",
        r"register\s+to\s+read",
    )
]


@dataclass
class ValidationResult:
    valid: bool
    content: str
    word_count: int
    paywalled: bool = False
    truncated: bool = False

    @property
    def reason(self) -> str | None:
        if self.paywalled:
            return "Paywall or login wall detected"
        if not self.valid:
            return f"Content too short ({self.word_count} words)"
        return None


def count_words(text: str) -> int:
    return len(text.split())


def is_paywalled(text: str) -> bool:
    return any(pattern.search(text) for pattern in PAYWALL_PATTERNS)


def validate_content(raw: str | None) -> ValidationResult:
    content = (raw or "").strip()
    paywalled = is_paywalled(content)
    word_count = count_words(content)
    if len(content) < MIN_CONTENT_LENGTH or word_count < MIN_WORD_COUNT:
        return ValidationResult(valid=False, content=content, word_count=word_count, paywalled=paywalled)

    truncated = False
    if len(content) > MAX_CONTENT_LENGTH:
        content = content[:MAX_CONTENT_LENGTH] + TRUNCATION_MARKER
        truncated = True
        word_count = count_words(content)

    return ValidationResult(
        valid=not paywalled,
        content=content,
        word_count=word_count,
        paywalled=paywalled,
        truncated=truncated,
    )
