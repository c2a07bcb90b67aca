"""Blocker classification for pages that stop autonomous progress.

Page text (and optionally the URL) is matched against ordered signature
tables, one per blocker type. Order matters: CAPTCHA and MFA are checked
before login failure so a challenge on a login page is not reported as a
credentials error, and cookie-consent / page-error checks run last and can
be skipped by callers that want the correction loop to own them.
"""

import re
import logging
from typing import List, Optional, Tuple, Callable

from ..schemas import BlockerDetectionResult, BlockerType, RequiredField, ResolutionMethod

logger = logging.getLogger(__name__)

DEFAULT_MIN_CONFIDENCE = 0.7
LOGIN_CONTEXT_WINDOW = 5000


def _compile(table: List[Tuple[str, float]]) -> List[Tuple[re.Pattern, float]]:
    return [(re.compile(p, re.IGNORECASE), c) for p, c in table]


LOGIN_FAILURE_PATTERNS = _compile([
    (r"invalid\s+(credentials?|username|password|login)", 0.95),
    (r"login\s+failed", 0.95),
    (r"authentication\s+failed", 0.95),
    (r"incorrect\s+(password|username|credentials?)", 0.95),
    (r"wrong\s+(password|username|credentials?)", 0.95),
    (r"password\s+(is\s+)?incorrect", 0.95),
    (r"account\s+(not\s+found|locked|disabled|suspended)", 0.9),
    (r"user\s+not\s+found", 0.9),
    (r"no\s+account\s+(found|exists)", 0.9),
    (r"email\s+(not\s+registered|not\s+found)", 0.9),
])

MFA_PATTERNS = _compile([
    (r"enter\s+(the\s+)?(verification|security)\s+code", 0.95),
    (r"two.?factor\s+authentication", 0.95),
    (r"2fa|mfa", 0.8),
    (r"sent\s+(a\s+)?code\s+to\s+(your\s+)?(phone|email|device)", 0.9),
    (r"authenticator\s+app", 0.9),
    (r"verify\s+(your|it'?s)\s+you", 0.85),
    (r"security\s+check", 0.7),
])

CAPTCHA_PATTERNS = _compile([
    (r"captcha", 0.95),
    (r"recaptcha", 0.95),
    (r"hcaptcha", 0.95),
    (r"i'?m\s+not\s+a\s+robot", 0.95),
    (r"verify\s+(you'?re|you\s+are)\s+(human|not\s+a\s+bot)", 0.9),
    (r"select\s+all\s+(images|squares)", 0.85),
    (r"click\s+on\s+all\s+(images|pictures)", 0.85),
])

COOKIE_CONSENT_PATTERNS = _compile([
    (r"cookie\s+(consent|policy|preferences|settings)", 0.9),
    (r"accept\s+(all\s+)?cookies", 0.9),
    (r"we\s+use\s+cookies", 0.85),
    (r"gdpr|ccpa", 0.8),
    (r"privacy\s+(policy|settings|preferences)", 0.7),
    (r"manage\s+(cookie|privacy)\s+(settings|preferences)", 0.85),
])

RATE_LIMIT_PATTERNS = _compile([
    (r"too\s+many\s+(attempts|tries|requests)", 0.95),
    (r"rate\s+limit(ed)?", 0.95),
    (r"temporarily\s+(locked|blocked|unavailable)", 0.9),
    (r"try\s+again\s+(in|after)\s+\d+", 0.9),
    (r"slow\s+down", 0.8),
    (r"please\s+wait", 0.6),
])

SESSION_EXPIRED_PATTERNS = _compile([
    (r"session\s+(has\s+)?expired", 0.95),
    (r"please\s+(log\s*in|sign\s*in)\s+again", 0.9),
    (r"your\s+session\s+has\s+timed?\s*out", 0.95),
    (r"you('ve|\s+have)\s+been\s+logged?\s*out", 0.9),
    (r"login\s+(session\s+)?timeout", 0.9),
])

ACCESS_DENIED_PATTERNS = _compile([
    (r"access\s+denied", 0.95),
    (r"permission\s+denied", 0.95),
    (r"unauthorized", 0.9),
    (r"forbidden", 0.85),
    (r"you\s+don'?t\s+have\s+(access|permission)", 0.9),
    (r"not\s+authorized", 0.9),
])

PAGE_ERROR_PATTERNS = _compile([
    (r"page\s+not\s+found", 0.95),
    (r"404\s+(error|not\s+found)", 0.95),
    (r"500\s+(internal\s+)?server\s+error", 0.95),
    (r"something\s+went\s+wrong", 0.7),
    (r"oops!", 0.5),
    (r"error\s+occurred", 0.7),
])

LOGIN_CONTEXT_PATTERNS = [re.compile(p, re.IGNORECASE) for p in (r"login", r"sign\s*in", r"log\s*in", r"authenticate")]

RETRY_AFTER_PATTERN = re.compile(r"try\s+again\s+(in|after)\s+(\d+)\s*(seconds?|minutes?|hours?)?", re.IGNORECASE)

CREDENTIAL_FIELDS = [
    RequiredField(name="username", label="Username or Email", type="text"),
    RequiredField(name="password", label="Password", type="password"),
]

USER_INTERVENTION_TYPES = {
    BlockerType.LOGIN_FAILURE,
    BlockerType.MFA_REQUIRED,
    BlockerType.CAPTCHA,
    BlockerType.MISSING_INFO,
    BlockerType.ACCESS_DENIED,
}
AUTO_RETRY_TYPES = {BlockerType.RATE_LIMIT, BlockerType.PAGE_ERROR}
AUTO_DISMISS_TYPES = {BlockerType.COOKIE_CONSENT, BlockerType.MODAL_DECISION}


def match_patterns(content: str, patterns: List[Tuple[re.Pattern, float]]) -> Optional[Tuple[str, float]]:
    """Return (matched text, confidence) for the first pattern that matches."""
    for pattern, confidence in patterns:
        match = pattern.search(content)
        if match:
            return match.group(0), confidence
    return None


def in_login_context(page: str, url: Optional[str] = None) -> bool:
    if url and any(p.search(url) for p in LOGIN_CONTEXT_PATTERNS):
        return True
    head = page[:LOGIN_CONTEXT_WINDOW]
    return any(p.search(head) for p in LOGIN_CONTEXT_PATTERNS)


def detect_login_failure(page: str, url: Optional[str] = None) -> BlockerDetectionResult:
    # Without a login context, generic error text is not a credentials problem
    if not in_login_context(page, url):
        return BlockerDetectionResult()
    hit = match_patterns(page, LOGIN_FAILURE_PATTERNS)
    if not hit:
        return BlockerDetectionResult()
    text, confidence = hit
    return BlockerDetectionResult(
        detected=True,
        type=BlockerType.LOGIN_FAILURE,
        description="Login failed due to invalid credentials",
        matched_pattern=text,
        confidence=confidence,
        resolution_methods=[ResolutionMethod.PROVIDE_IN_CHAT, ResolutionMethod.USER_ACTION_ON_WEB],
        user_message=f'I tried to log in, but the site says "{text}". Could you provide the correct credentials?',
        required_fields=list(CREDENTIAL_FIELDS),
    )


def detect_mfa_challenge(page: str) -> BlockerDetectionResult:
    hit = match_patterns(page, MFA_PATTERNS)
    if not hit:
        return BlockerDetectionResult()
    text, confidence = hit
    return BlockerDetectionResult(
        detected=True,
        type=BlockerType.MFA_REQUIRED,
        description="Multi-factor authentication is required",
        matched_pattern=text,
        confidence=confidence,
        resolution_methods=[ResolutionMethod.USER_ACTION_ON_WEB, ResolutionMethod.PROVIDE_IN_CHAT],
        user_message=(
            "The site requires a verification code. Please check your phone/email and either "
            "enter it on the website or provide it here."
        ),
        required_fields=[
            RequiredField(
                name="code",
                label="Verification Code",
                type="code",
                description="6-digit code from your phone/email",
            )
        ],
    )


def detect_captcha(page: str) -> BlockerDetectionResult:
    hit = match_patterns(page, CAPTCHA_PATTERNS)
    if not hit:
        return BlockerDetectionResult()
    text, confidence = hit
    return BlockerDetectionResult(
        detected=True,
        type=BlockerType.CAPTCHA,
        description="CAPTCHA verification is required",
        matched_pattern=text,
        confidence=confidence,
        resolution_methods=[ResolutionMethod.USER_ACTION_ON_WEB],
        user_message=(
            "There's a CAPTCHA that I cannot solve. Please complete it on the website, "
            "then let me know when you're done."
        ),
    )


def detect_cookie_consent(page: str) -> BlockerDetectionResult:
    hit = match_patterns(page, COOKIE_CONSENT_PATTERNS)
    if not hit:
        return BlockerDetectionResult()
    text, confidence = hit
    return BlockerDetectionResult(
        detected=True,
        type=BlockerType.COOKIE_CONSENT,
        description="Cookie consent banner detected",
        matched_pattern=text,
        confidence=confidence,
        resolution_methods=[ResolutionMethod.ALTERNATIVE_ACTION, ResolutionMethod.USER_ACTION_ON_WEB],
        user_message=(
            "There's a cookie consent banner. I'll try to dismiss it automatically. "
            "If that doesn't work, please accept/decline it yourself."
        ),
    )


def parse_retry_after(page: str) -> Optional[int]:
    """Extract a retry delay in seconds from 'try again in N minutes' style text."""
    match = RETRY_AFTER_PATTERN.search(page)
    if not match:
        return None
    value = int(match.group(2))
    unit = (match.group(3) or "seconds").lower()
    if unit.startswith("minute"):
        return value * 60
    if unit.startswith("hour"):
        return value * 3600
    return value


def detect_rate_limit(page: str) -> BlockerDetectionResult:
    hit = match_patterns(page, RATE_LIMIT_PATTERNS)
    if not hit:
        return BlockerDetectionResult()
    text, confidence = hit
    retry_after = parse_retry_after(page)
    if retry_after:
        message = f"The site says we're making too many requests. Please wait {retry_after} seconds before continuing."
    else:
        message = "The site has rate-limited us. Please wait a moment before trying again."
    return BlockerDetectionResult(
        detected=True,
        type=BlockerType.RATE_LIMIT,
        description="Rate limit reached",
        matched_pattern=text,
        confidence=confidence,
        resolution_methods=[ResolutionMethod.AUTO_RETRY],
        user_message=message,
        retry_after_seconds=retry_after,
    )


def detect_session_expired(page: str) -> BlockerDetectionResult:
    hit = match_patterns(page, SESSION_EXPIRED_PATTERNS)
    if not hit:
        return BlockerDetectionResult()
    text, confidence = hit
    return BlockerDetectionResult(
        detected=True,
        type=BlockerType.SESSION_EXPIRED,
        description="Session has expired",
        matched_pattern=text,
        confidence=confidence,
        resolution_methods=[ResolutionMethod.USER_ACTION_ON_WEB, ResolutionMethod.PROVIDE_IN_CHAT],
        user_message="Your session has expired. Please log in again on the website or provide your credentials here.",
        required_fields=list(CREDENTIAL_FIELDS),
    )


def detect_access_denied(page: str) -> BlockerDetectionResult:
    hit = match_patterns(page, ACCESS_DENIED_PATTERNS)
    if not hit:
        return BlockerDetectionResult()
    text, confidence = hit
    return BlockerDetectionResult(
        detected=True,
        type=BlockerType.ACCESS_DENIED,
        description="Access denied to this resource",
        matched_pattern=text,
        confidence=confidence,
        resolution_methods=[ResolutionMethod.USER_ACTION_ON_WEB],
        user_message=(
            f'Access was denied: "{text}". You may need to log in with an account that has the right permissions.'
        ),
    )


def detect_page_error(page: str) -> BlockerDetectionResult:
    hit = match_patterns(page, PAGE_ERROR_PATTERNS)
    if not hit:
        return BlockerDetectionResult()
    text, confidence = hit
    return BlockerDetectionResult(
        detected=True,
        type=BlockerType.PAGE_ERROR,
        description="Page error encountered",
        matched_pattern=text,
        confidence=confidence,
        resolution_methods=[ResolutionMethod.ALTERNATIVE_ACTION],
        user_message=f'The page shows an error: "{text}". I\'ll try a different approach.',
    )


def detect_blocker(
    page: str,
    url: Optional[str] = None,
    skip_cookie_consent: bool = False,
    skip_page_errors: bool = False,
    min_confidence: float = DEFAULT_MIN_CONFIDENCE,
) -> BlockerDetectionResult:
    """Run every detector in priority order.

    Args:
        page: Page text or markup.
        url: Current page URL (used for the login-context gate).
        skip_cookie_consent: Leave consent banners to the action layer.
        skip_page_errors: Leave page errors to the correction loop.
        min_confidence: Matches below this confidence are ignored.

    Returns:
        The first detection at or above ``min_confidence``, or an
        undetected result.
    """
    detectors: List[Callable[[], BlockerDetectionResult]] = [
        lambda: detect_captcha(page),
        lambda: detect_mfa_challenge(page),
        lambda: detect_login_failure(page, url),
        lambda: detect_session_expired(page),
        lambda: detect_rate_limit(page),
        lambda: detect_access_denied(page),
    ]
    if not skip_cookie_consent:
        detectors.append(lambda: detect_cookie_consent(page))
    if not skip_page_errors:
        detectors.append(lambda: detect_page_error(page))

    for detect in detectors:
        result = detect()
        if result.detected and result.confidence >= min_confidence:
            logger.info("Blocker detected: %s (%.2f) matched %r", result.type.value, result.confidence, result.matched_pattern)
            return result

    return BlockerDetectionResult()


def requires_user_intervention(blocker_type: Optional[BlockerType]) -> bool:
    """Blockers that pause the task until the user acts."""
    return blocker_type in USER_INTERVENTION_TYPES


def can_auto_retry(blocker_type: Optional[BlockerType]) -> bool:
    """Blockers the correction loop may retry after a delay."""
    return blocker_type in AUTO_RETRY_TYPES


def can_auto_dismiss(blocker_type: Optional[BlockerType]) -> bool:
    """Blockers the action layer may dismiss without asking."""
    return blocker_type in AUTO_DISMISS_TYPES
