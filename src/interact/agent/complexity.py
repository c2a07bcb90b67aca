"""Model-free complexity routing.

Classifies a goal as SIMPLE (one action, skip planning) or COMPLEX (plan
first) with ordered heuristics. Anything ambiguous defaults to COMPLEX,
the fuller and safer path.
"""

import re
from typing import Optional

from ..schemas import ComplexityClassification, ComplexityLevel

SIMPLE_ACTION_VERBS = [
    "click",
    "press",
    "tap",
    "select",
    "check",
    "uncheck",
    "toggle",
    "open",
    "close",
    "expand",
    "collapse",
    "scroll",
    "hover",
    "focus",
    "logout",
    "log out",
    "sign out",
    "signout",
    "refresh",
    "reload",
    "go back",
    "back",
    "forward",
    "dismiss",
    "cancel",
    "clear",
]

COMPLEX_KEYWORDS = [
    "add",
    "create",
    "new",
    "edit",
    "update",
    "modify",
    "delete",
    "remove",
    "fill",
    "form",
    "submit",
    "save",
    "register",
    "sign up",
    "signup",
    "login",
    "log in",
    "signin",
    "sign in",
    "search for",
    "find and",
    "navigate to",
    "go to the",
    "configure",
    "set up",
    "setup",
    "schedule",
    "book",
    "order",
    "purchase",
    "buy",
    "checkout",
    "check out",
    "complete",
    "finish",
    "upload",
    "download",
    "export",
    "import",
    "transfer",
    "copy",
    "move",
    "rename",
    "change",
    "manage",
    "organize",
    "filter",
    "sort",
]

MULTI_FIELD_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"with (?:name|email|phone|address|date|time|id|number)",
        r"\bname\s*['\":]?\s*\w+",
        r"\bdob\b|\bdate of birth\b",
        r"\bemail\b.*@",
        r"multiple|several|all|every|each",
        r"step\s*\d+|first|then|after|next|finally",
        r"and\s+(?:then|also|additionally)",
    )
]

SINGLE_TARGET_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"^click\s+(?:the\s+)?(?:on\s+)?[\"']?[\w\s]+[\"']?\s*(?:button|link|tab|menu|icon)?$",
        r"^(?:press|tap|select)\s+(?:the\s+)?[\"']?[\w\s]+[\"']?$",
        r"^(?:open|close|expand|collapse)\s+(?:the\s+)?[\"']?[\w\s]+[\"']?$",
        r"^(?:log\s*out|sign\s*out|logout|signout)$",
        r"^(?:go\s+)?back$",
        r"^refresh(?:\s+(?:the\s+)?page)?$",
    )
]

CONJOINED_ACTIONS = re.compile(r"\band\b.*\b(click|press|fill|select|type|enter|submit)", re.IGNORECASE)


def classify_complexity(query: str, page: Optional[str] = None) -> ComplexityClassification:
    """Classify a goal as SIMPLE or COMPLEX.

    Args:
        query: The user's goal text.
        page: Current page snapshot. Accepted for callers that pass it; the
            text heuristics do not depend on it.

    Returns:
        ComplexityClassification with the first matching rule's reason.
    """
    normalized = query.lower().strip()
    words = normalized.split()
    word_count = len(words)

    if word_count <= 4:
        for verb in SIMPLE_ACTION_VERBS:
            if normalized.startswith(verb) or f" {verb}" in normalized:
                return ComplexityClassification(
                    complexity=ComplexityLevel.SIMPLE,
                    reason=f'Short query ({word_count} words) with simple action verb "{verb}"',
                    confidence=0.9,
                )

    for pattern in SINGLE_TARGET_PATTERNS:
        if pattern.search(normalized):
            return ComplexityClassification(
                complexity=ComplexityLevel.SIMPLE,
                reason="Query matches single-target pattern",
                confidence=0.95,
            )

    for pattern in MULTI_FIELD_PATTERNS:
        if pattern.search(normalized):
            return ComplexityClassification(
                complexity=ComplexityLevel.COMPLEX,
                reason=f"Query contains multi-field pattern: {pattern.pattern}",
                confidence=0.85,
            )

    for keyword in COMPLEX_KEYWORDS:
        if keyword in normalized:
            return ComplexityClassification(
                complexity=ComplexityLevel.COMPLEX,
                reason=f'Query contains complex keyword "{keyword}"',
                confidence=0.8,
            )

    if word_count <= 5:
        return ComplexityClassification(
            complexity=ComplexityLevel.SIMPLE,
            reason=f"Short query ({word_count} words) without complex indicators",
            confidence=0.7,
        )

    if word_count >= 10:
        return ComplexityClassification(
            complexity=ComplexityLevel.COMPLEX,
            reason=f"Long query ({word_count} words) likely requires multiple steps",
            confidence=0.75,
        )

    if CONJOINED_ACTIONS.search(normalized):
        return ComplexityClassification(
            complexity=ComplexityLevel.COMPLEX,
            reason='Query contains multiple actions connected with "and"',
            confidence=0.8,
        )

    return ComplexityClassification(
        complexity=ComplexityLevel.COMPLEX,
        reason=f"Medium-length query ({word_count} words) defaulting to COMPLEX for safety",
        confidence=0.6,
    )


def is_definitely_simple(query: str) -> bool:
    result = classify_complexity(query)
    return result.complexity == ComplexityLevel.SIMPLE and result.confidence >= 0.85


def is_definitely_complex(query: str) -> bool:
    result = classify_complexity(query)
    return result.complexity == ComplexityLevel.COMPLEX and result.confidence >= 0.85
