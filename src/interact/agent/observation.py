"""Before/after snapshots and the plain-language observations derived from them."""

import hashlib
from typing import List, Optional

from .dom_similarity import build_skeleton, extract_signatures
from ..schemas import BeforeState, ClientObservations


def compute_dom_hash(page: str) -> str:
    return hashlib.sha256((page or "").encode("utf-8")).hexdigest()


def capture_before_state(url: str, page: str, active_element: Optional[str] = None) -> BeforeState:
    """Snapshot the page an action is generated against."""
    return BeforeState(
        url=url,
        dom_hash=compute_dom_hash(page),
        active_element=active_element,
        skeleton=build_skeleton(page or ""),
    )


def _interactive(page: str) -> List[str]:
    return [s.signature for s in extract_signatures(page) if s.is_interactive]


def skeleton_diff(before_skeleton: str, after_page: str) -> List[str]:
    """Describe interactive elements that appeared or disappeared."""
    before = _interactive(before_skeleton)
    after = _interactive(after_page)
    before_set, after_set = set(before), set(after)
    appeared = [s for s in after if s not in before_set]
    disappeared = [s for s in before if s not in after_set]

    lines = []
    if appeared:
        sample = ", ".join(dict.fromkeys(appeared[:3]))
        lines.append(f"{len(appeared)} interactive element(s) appeared ({sample})")
    if disappeared:
        sample = ", ".join(dict.fromkeys(disappeared[:3]))
        lines.append(f"{len(disappeared)} interactive element(s) disappeared ({sample})")
    return lines


def build_observations(
    before: BeforeState,
    after_url: str,
    after_page: str,
    after_active_element: Optional[str] = None,
    client_observations: Optional[ClientObservations] = None,
) -> List[str]:
    """List what visibly changed between the before-state and now.

    Args:
        before: Snapshot saved when the action was generated.
        after_url: Current URL.
        after_page: Current page snapshot.
        after_active_element: Currently focused element, if known.
        client_observations: Signals witnessed by the client.

    Returns:
        Ordered observation strings for the verification judge.
    """
    observations = []

    if before.url != after_url:
        observations.append(f"Navigation occurred: URL changed from {before.url} to {after_url}")
    else:
        observations.append("URL did not change")

    after_hash = compute_dom_hash(after_page)
    granular = skeleton_diff(before.skeleton, after_page) if before.skeleton else []
    if granular:
        observations.extend(granular)
    elif before.dom_hash != after_hash:
        observations.append("Page content updated (DOM changed)")
    else:
        observations.append("Page content did not change (DOM hash identical)")

    if before.active_element is not None or after_active_element is not None:
        if before.active_element != after_active_element:
            observations.append(
                f'Focus/active element changed from "{before.active_element or "none"}" '
                f'to "{after_active_element or "none"}"'
            )

    if client_observations is not None:
        if client_observations.did_network_occur:
            observations.append("Background network activity detected (client witnessed)")
        if client_observations.did_dom_mutate:
            observations.append("DOM was mutated (client witnessed)")
        if client_observations.did_url_change is not None:
            observations.append(f"Client reported URL changed: {client_observations.did_url_change}")
        if client_observations.network_error:
            observations.append(f"Client reported an error: {client_observations.network_error}")

    return observations


def has_meaningful_content_change(before: BeforeState, after_page: str) -> bool:
    """True when interactive structure changed, not merely text or hashes."""
    if not before.skeleton:
        return False
    return bool(skeleton_diff(before.skeleton, after_page))
