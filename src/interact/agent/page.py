"""Parsing for HTML page snapshots.

Snapshots arrive as HTML text (full pages or the compact skeletons saved
with each action). They are parsed once with BeautifulSoup and the tree is
shared by the structural diff, the DOM checks, action classification and
the page summary.
"""

import re
from typing import Optional, Union

from bs4 import BeautifulSoup, Tag
from soupsieve import SelectorSyntaxError

PARSER = "html.parser"

Page = Union[str, BeautifulSoup, None]

SIMPLE_NAME = re.compile(r"^[\w-]+$")


def parse_page(page: Page) -> BeautifulSoup:
    """Parse a snapshot, passing an already parsed tree through."""
    if isinstance(page, BeautifulSoup):
        return page
    return BeautifulSoup(page or "", PARSER)


def text_of(element) -> str:
    """Visible text of an element with whitespace collapsed."""
    return " ".join(element.get_text(" ").split())


def find_element(page: Page, selector: str) -> Optional[Tag]:
    """Find the first element matching a selector.

    ``#id`` and ``.class`` are looked up directly so ids that are not valid
    CSS identifiers (``#7``) still resolve. Anything else goes through CSS
    selection; a bare word that matches no tag is tried as an id, then as a
    class.
    """
    soup = parse_page(page)
    selector = (selector or "").strip()
    if not selector:
        return None

    if selector[0] in "#." and SIMPLE_NAME.match(selector[1:]):
        if selector[0] == "#":
            return soup.find(id=selector[1:])
        return soup.find(class_=selector[1:])

    try:
        found = soup.select_one(selector)
    except SelectorSyntaxError:
        found = None
    if found is None and SIMPLE_NAME.match(selector):
        found = soup.find(id=selector) or soup.find(class_=selector)
    return found


def has_role(page: Page, *roles: str) -> bool:
    """True when any element carries one of the given ARIA roles."""
    wanted = {r.lower() for r in roles if r}
    if not wanted:
        return False
    soup = parse_page(page)
    return soup.find(lambda el: (el.get("role") or "").lower() in wanted) is not None
