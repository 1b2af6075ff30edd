"""Prompt-injection heuristics for captured page content.

Page text is untrusted input to the planner. The detector flags
instruction-like content, credential keywords and obfuscated blobs so the
agent loop can ask the user before planning on such a page. Regex matching
is heuristic; callers depend only on `scan()`.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

SUSPICIOUS_PATTERNS = tuple(
    re.compile(p, re.IGNORECASE)
    for p in (
        # Instruction override
        r"ignore\s+(previous|prior|above|all)\s+(instructions?|prompts?|rules?)",
        r"disregard\s+(the\s+)?(above|previous|prior)",
        r"forget\s+(everything|all|previous)",
        r"new\s+system\s+prompt",
        r"override\s+(the\s+)?(system|instructions?)",
        # Role manipulation
        r"you\s+are\s+now\s+(a|an|the)\b",
        r"pretend\s+(you\s+are|to\s+be)",
        r"roleplay\s+as",
        # Fake chat delimiters
        r"\[(system|assistant|user)\]",
        r"<<SYS>>",
        r"<\|system\|>",
        r"\[INST\]",
        # Command execution and exfiltration
        r"execute\s+(the\s+)?following",
        r"run\s+(this|the\s+following)\s+(command|code)",
        r"send\s+(all|the|your)\s+(data|information|content)\s+to",
        r"exfiltrate",
        # Prompt leaking
        r"(reveal|show|display|print|output)\s+(your|the)\s+(system\s+)?prompt",
        r"```\s*system",
        r"###\s*INSTRUCTION",
    )
)

HIGH_RISK_KEYWORDS = (
    "api_key",
    "apikey",
    "credential",
    "authorization",
    "bearer",
    "private_key",
    "ssh_key",
)

_TEXT_FIELDS = ("text", "aria_label", "ariaLabel", "placeholder", "value")
_BASE64_RUN = re.compile(r"[A-Za-z0-9+/=]{50,}")
_WHITESPACE_RUN = re.compile(r"\s{20,}")


@dataclass(frozen=True, slots=True)
class InjectionReport:
    detected: bool
    source: str | None = None  # "pattern", "keyword" or "obfuscation"
    severity: str | None = None  # "high" or "medium"
    detail: str | None = None

    @property
    def message(self) -> str:
        if not self.detected:
            return ""
        if self.source == "pattern":
            return "Suspicious instruction-like content detected on page"
        if self.source == "keyword":
            return f'Sensitive keyword "{self.detail}" detected in page content'
        return "Potentially obfuscated content detected"


def _element_text(elements: Iterable[Mapping[str, Any]]) -> str:
    parts: list[str] = []
    for element in elements:
        for key in _TEXT_FIELDS:
            value = element.get(key)
            if value:
                parts.append(str(value))
    return " ".join(parts)


class InjectionDetector:
    def __init__(
        self,
        patterns: Iterable[re.Pattern[str]] = SUSPICIOUS_PATTERNS,
        keywords: Iterable[str] = HIGH_RISK_KEYWORDS,
    ) -> None:
        self._patterns = tuple(patterns)
        self._keywords = tuple(k.lower() for k in keywords)

    def scan(self, elements: Iterable[Mapping[str, Any]] | None) -> InjectionReport:
        if not elements:
            return InjectionReport(detected=False)
        text = _element_text(elements)

        for pattern in self._patterns:
            if pattern.search(text):
                return InjectionReport(True, "pattern", "high", pattern.pattern)

        lowered = text.lower()
        for keyword in self._keywords:
            if keyword in lowered:
                return InjectionReport(True, "keyword", "medium", keyword)

        if _is_obfuscated(text):
            return InjectionReport(True, "obfuscation", "medium")

        return InjectionReport(detected=False)


def _is_obfuscated(text: str) -> bool:
    if len(text) > 50:
        non_ascii = sum(1 for ch in text if ord(ch) > 0x7F)
        if non_ascii / len(text) > 0.3:
            return True
    return bool(_BASE64_RUN.search(text) or _WHITESPACE_RUN.search(text))
