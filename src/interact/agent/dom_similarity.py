"""Structural diff between two page snapshots.

Each snapshot is reduced to a set of element signatures (tag, id, a few
significant classes, role, and input type/name). Similarity is the Jaccard
index of the two sets blended with how many of the previous page's
interactive elements survived: 0.6 * structural + 0.4 * interactive.
Named structural changes (forms, dialogs, navigation, tables, main area,
interactive churn) are flagged separately.
"""

import re
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from urllib.parse import urlsplit

from .page import Page, parse_page
from ..schemas import DomSimilarityResult, ElementCounts, InteractiveCounts

logger = logging.getLogger(__name__)

STRUCTURAL_WEIGHT = 0.6
INTERACTIVE_WEIGHT = 0.4
DEFAULT_THRESHOLD = 0.7
INTERACTIVE_RETENTION_FLOOR = 0.5
MAX_SIGNATURE_CLASSES = 3

# Utility/spacing classes carry no structural meaning
UTILITY_CLASS_PATTERN = re.compile(r"^(p-|m-|w-|h-|flex|grid|text-|bg-|border-)")

SKIPPED_TAGS = {"script", "style", "meta", "link", "head", "html"}

INTERACTIVE_TAGS = {"button", "input", "select", "textarea", "a", "details", "summary"}

INTERACTIVE_ROLES = {
    "button",
    "link",
    "textbox",
    "combobox",
    "checkbox",
    "radio",
    "switch",
    "slider",
    "spinbutton",
    "listbox",
    "menu",
    "menuitem",
    "menuitemcheckbox",
    "menuitemradio",
    "tab",
    "tabpanel",
    "searchbox",
}


@dataclass(frozen=True)
class ElementSignature:
    """Normalized identity of one element in a snapshot."""

    tag: str
    signature: str
    id: Optional[str] = None
    classes: Tuple[str, ...] = field(default_factory=tuple)
    role: Optional[str] = None
    type: Optional[str] = None
    name: Optional[str] = None

    @property
    def is_interactive(self) -> bool:
        if self.tag in INTERACTIVE_TAGS:
            return True
        if self.role and self.role in INTERACTIVE_ROLES:
            return True
        return any("btn" in c or "button" in c or "clickable" in c for c in self.classes)


def _lowered(value: Optional[str]) -> Optional[str]:
    return value.lower() if value else None


def extract_signatures(page: Page) -> List[ElementSignature]:
    """Extract element signatures from every element in a snapshot.

    Args:
        page: HTML or skeleton text, or an already parsed tree. Comments and
            script/style contents are not elements and never contribute.

    Returns:
        Signatures in document order (duplicates kept).
    """
    signatures = []
    for element in parse_page(page).find_all(True):
        tag = element.name.lower()
        if tag in SKIPPED_TAGS:
            continue

        element_id = element.get("id") or None
        classes = tuple(c for c in element.get("class") or () if c)
        role = _lowered(element.get("role"))
        input_type = _lowered(element.get("type"))
        name = element.get("name") or None

        parts = [tag]
        if element_id:
            parts.append(f"#{element_id}")
        significant = [c for c in classes if not UTILITY_CLASS_PATTERN.match(c)][:MAX_SIGNATURE_CLASSES]
        if significant:
            parts.append("." + ".".join(significant))
        if role:
            parts.append(f"[role={role}]")
        if input_type and tag == "input":
            parts.append(f"[type={input_type}]")
        if name:
            parts.append(f"[name={name}]")

        signatures.append(
            ElementSignature(
                tag=tag,
                signature="".join(parts),
                id=element_id,
                classes=classes,
                role=role,
                type=input_type,
                name=name,
            )
        )
    return signatures


def build_skeleton(page: str) -> str:
    """Render a compact structural skeleton of a snapshot.

    The skeleton keeps only the attributes signatures are built from, so
    ``extract_signatures(build_skeleton(p))`` yields the same signatures as
    ``extract_signatures(p)``.
    """
    lines = []
    for sig in extract_signatures(page):
        attrs = []
        if sig.id:
            attrs.append(f'id="{sig.id}"')
        if sig.classes:
            attrs.append(f'class="{" ".join(sig.classes)}"')
        if sig.role:
            attrs.append(f'role="{sig.role}"')
        if sig.type:
            attrs.append(f'type="{sig.type}"')
        if sig.name:
            attrs.append(f'name="{sig.name}"')
        lines.append(f"<{sig.tag}{' ' if attrs else ''}{' '.join(attrs)}>")
    return "\n".join(lines)


def _count(sigs: List[ElementSignature], tags: Tuple[str, ...], roles: Tuple[str, ...]) -> int:
    return sum(1 for s in sigs if s.tag in tags or (s.role is not None and s.role in roles))


def detect_structural_changes(
    prev_sigs: List[ElementSignature],
    curr_sigs: List[ElementSignature],
    prev_interactive: List[ElementSignature],
    curr_interactive: List[ElementSignature],
) -> List[str]:
    """Flag named structural changes between two signature lists."""
    changes = []

    prev_forms = _count(prev_sigs, ("form",), ())
    curr_forms = _count(curr_sigs, ("form",), ())
    if prev_forms > 0 and curr_forms == 0:
        changes.append("form removed")
    elif prev_forms == 0 and curr_forms > 0:
        changes.append("form added")
    elif prev_forms != curr_forms:
        changes.append(f"form count changed: {prev_forms} → {curr_forms}")

    prev_nav = _count(prev_sigs, ("nav",), ("navigation",))
    curr_nav = _count(curr_sigs, ("nav",), ("navigation",))
    if prev_nav != curr_nav:
        changes.append(f"navigation changed: {prev_nav} → {curr_nav}")

    prev_dialogs = _count(prev_sigs, ("dialog",), ("dialog", "alertdialog"))
    curr_dialogs = _count(curr_sigs, ("dialog",), ("dialog", "alertdialog"))
    if prev_dialogs == 0 and curr_dialogs > 0:
        changes.append("dialog/modal opened")
    elif prev_dialogs > 0 and curr_dialogs == 0:
        changes.append("dialog/modal closed")

    prev_interactive_set = {s.signature for s in prev_interactive}
    retained = sum(1 for c in curr_interactive if c.signature in prev_interactive_set)
    retention = retained / len(prev_interactive) if prev_interactive else 1.0
    if retention < INTERACTIVE_RETENTION_FLOOR:
        changes.append(f"major interactive element change ({retention * 100:.0f}% retained)")

    prev_tables = _count(prev_sigs, ("table",), ("grid", "table"))
    curr_tables = _count(curr_sigs, ("table",), ("grid", "table"))
    if prev_tables != curr_tables:
        changes.append(f"table/grid count changed: {prev_tables} → {curr_tables}")

    if _count(prev_sigs, ("main",), ("main",)) != _count(curr_sigs, ("main",), ("main",)):
        changes.append("main content area changed")

    return changes


def _similarity(previous_page: str, current_page: str, threshold: float) -> DomSimilarityResult:
    prev_sigs = extract_signatures(previous_page)
    curr_sigs = extract_signatures(current_page)

    prev_set = {s.signature for s in prev_sigs}
    curr_set = {s.signature for s in curr_sigs}
    intersection = prev_set & curr_set
    union = prev_set | curr_set
    structural = len(intersection) / len(union) if union else 1.0

    prev_interactive = [s for s in prev_sigs if s.is_interactive]
    curr_interactive = [s for s in curr_sigs if s.is_interactive]
    prev_interactive_set = {s.signature for s in prev_interactive}
    retained = prev_interactive_set & {s.signature for s in curr_interactive}
    interactive = len(retained) / len(prev_interactive_set) if prev_interactive_set else 1.0

    score = structural * STRUCTURAL_WEIGHT + interactive * INTERACTIVE_WEIGHT
    changes = detect_structural_changes(prev_sigs, curr_sigs, prev_interactive, curr_interactive)

    return DomSimilarityResult(
        similarity=score,
        structural_similarity=structural,
        interactive_similarity=interactive,
        structural_changes=changes,
        should_replan=score < threshold or bool(changes),
        element_counts=ElementCounts(
            previous=len(prev_sigs),
            current=len(curr_sigs),
            intersection=len(intersection),
            union=len(union),
        ),
        interactive_counts=InteractiveCounts(
            previous=len(prev_interactive),
            current=len(curr_interactive),
            retained=len(retained),
        ),
    )


def calculate_dom_similarity(
    previous_page: str, current_page: str, threshold: float = DEFAULT_THRESHOLD
) -> DomSimilarityResult:
    """Compare two snapshots structurally.

    Args:
        previous_page: Snapshot before the change.
        current_page: Snapshot after the change.
        threshold: Score below which re-planning is suggested.

    Returns:
        DomSimilarityResult. On an internal failure a conservative result
        (score 0.5, ``should_replan=True``) is returned instead of raising.
    """
    try:
        return _similarity(previous_page or "", current_page or "", threshold)
    except Exception as e:
        logger.exception("DOM similarity failed: %s", e)
        return DomSimilarityResult(
            similarity=0.5,
            structural_similarity=0.5,
            interactive_similarity=0.5,
            structural_changes=["error calculating similarity"],
            should_replan=True,
        )


def _split(url: str):
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"Not an absolute URL: {url!r}")
    return parts


def has_significant_url_change(previous_url: str, current_url: str) -> bool:
    """True when hostname or path differ. Query and fragment are ignored.

    Unparseable URLs count as changed unless byte-identical.
    """
    try:
        prev = _split(previous_url)
        curr = _split(current_url)
    except ValueError:
        return previous_url != current_url
    return prev.hostname != curr.hostname or prev.path != curr.path


def is_cross_domain_navigation(previous_url: str, current_url: str) -> bool:
    try:
        prev = _split(previous_url)
        curr = _split(current_url)
    except ValueError:
        return False
    return (prev.hostname or "").lower() != (curr.hostname or "").lower()


def _path(url: str) -> str:
    try:
        return _split(url).path or "/"
    except ValueError:
        return url


@dataclass
class ReplanTrigger:
    should_replan: bool
    reasons: List[str]
    url_changed: bool
    dom_similarity: DomSimilarityResult


def should_trigger_replanning(
    previous_page: str,
    current_page: str,
    previous_url: str,
    current_url: str,
    threshold: float = DEFAULT_THRESHOLD,
) -> ReplanTrigger:
    """Combine URL and structural checks into a re-planning trigger."""
    reasons = []

    url_changed = has_significant_url_change(previous_url, current_url)
    if url_changed:
        reasons.append(f"URL path changed: {_path(previous_url)} → {_path(current_url)}")

    similarity = calculate_dom_similarity(previous_page, current_page, threshold)
    if similarity.similarity < threshold:
        reasons.append(
            f"DOM similarity below threshold: {similarity.similarity * 100:.1f}% < {threshold * 100:.0f}%"
        )
    if similarity.structural_changes:
        reasons.append(f"Structural changes: {', '.join(similarity.structural_changes)}")

    return ReplanTrigger(
        should_replan=url_changed or similarity.should_replan,
        reasons=reasons,
        url_changed=url_changed,
        dom_similarity=similarity,
    )
