"""Tagged action variants and their wire format.

Clients exchange actions as strings such as ``click(42)`` or
``setValue(7, "hello")``. Strings are parsed into a variant as soon as they
enter the system and only formatted back at the serialization boundary;
nothing else inspects the raw text.
"""

from dataclasses import dataclass
from typing import List, Optional, Union

from bs4 import Tag

from .errors import InvalidActionError
from .page import Page, parse_page
from ..schemas import ActionType


@dataclass(frozen=True)
class Click:
    element_id: str


@dataclass(frozen=True)
class SetValue:
    element_id: str
    text: str


@dataclass(frozen=True)
class Navigate:
    url: str


@dataclass(frozen=True)
class GoBack:
    pass


@dataclass(frozen=True)
class Scroll:
    down: bool = True


@dataclass(frozen=True)
class Wait:
    seconds: float = 1.0


@dataclass(frozen=True)
class Press:
    key: str


@dataclass(frozen=True)
class Hover:
    element_id: str


@dataclass(frozen=True)
class Search:
    query: str


@dataclass(frozen=True)
class Finish:
    message: str = ""


@dataclass(frozen=True)
class Fail:
    reason: str = ""


Action = Union[Click, SetValue, Navigate, GoBack, Scroll, Wait, Press, Hover, Search, Finish, Fail]

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r"}

# Most positional arguments each action accepts
_ARITY = {
    "click": 1,
    "setvalue": 2,
    "navigate": 1,
    "goback": 0,
    "scroll": 1,
    "wait": 1,
    "press": 1,
    "hover": 1,
    "search": 1,
    "finish": 1,
    "fail": 1,
}


def _read_quoted(text: str, start: int) -> tuple[str, int]:
    """Read a double-quoted string starting at ``text[start] == '"'``.

    Returns the unescaped value and the index just past the closing quote.
    """
    out = []
    i = start + 1
    while i < len(text):
        char = text[i]
        if char == "\\" and i + 1 < len(text):
            nxt = text[i + 1]
            out.append(_ESCAPES.get(nxt, nxt))
            i += 2
            continue
        if char == '"':
            return "".join(out), i + 1
        out.append(char)
        i += 1
    raise InvalidActionError(f"Unterminated string in action arguments: {text!r}")


def split_arguments(inner: str) -> List[str]:
    """Split an argument list into values, honouring quoted strings."""
    args = []
    i = 0
    inner = inner.strip()
    while i < len(inner):
        while i < len(inner) and inner[i] in " \t":
            i += 1
        if i >= len(inner):
            break
        if inner[i] == '"':
            value, i = _read_quoted(inner, i)
        else:
            end = inner.find(",", i)
            end = len(inner) if end == -1 else end
            value = inner[i:end].strip()
            i = end
        args.append(value)
        while i < len(inner) and inner[i] in " \t":
            i += 1
        if i < len(inner):
            if inner[i] != ",":
                raise InvalidActionError(f"Expected ',' in action arguments: {inner!r}")
            i += 1
    return args


def extract_action_name(raw: str) -> Optional[str]:
    trimmed = raw.strip()
    paren = trimmed.find("(")
    if paren <= 0:
        return None
    name = trimmed[:paren]
    return name if name.isalpha() and name.isascii() else None


def _require(args: List[str], count: int, raw: str) -> None:
    if len(args) < count or any(not a for a in args[:count]):
        raise InvalidActionError(f"Missing arguments in action: {raw!r}")


def parse_action(raw: str) -> Action:
    """Parse a wire-format action string into a tagged variant.

    Raises:
        InvalidActionError: If the string is not a recognized action.
    """
    trimmed = (raw or "").strip()
    name = extract_action_name(trimmed)
    if name is None or not trimmed.endswith(")"):
        raise InvalidActionError(f"Not an action call: {raw!r}")

    args = split_arguments(trimmed[len(name) + 1:-1])
    key = name.lower()
    if key in _ARITY and len(args) > _ARITY[key]:
        raise InvalidActionError(
            f"{name} takes at most {_ARITY[key]} argument(s), got {len(args)}: {raw!r}"
        )

    if key == "click":
        _require(args, 1, raw)
        return Click(element_id=args[0])
    if key == "setvalue":
        _require(args, 1, raw)
        if len(args) < 2:
            raise InvalidActionError(f"setValue needs an element and text: {raw!r}")
        return SetValue(element_id=args[0], text=args[1])
    if key == "navigate":
        _require(args, 1, raw)
        return Navigate(url=args[0])
    if key == "goback":
        return GoBack()
    if key == "scroll":
        down = not args or args[0].lower() not in ("false", "up")
        return Scroll(down=down)
    if key == "wait":
        try:
            return Wait(seconds=float(args[0]) if args and args[0] else 1.0)
        except ValueError as e:
            raise InvalidActionError(f"wait expects a number of seconds: {raw!r}") from e
    if key == "press":
        _require(args, 1, raw)
        return Press(key=args[0])
    if key == "hover":
        _require(args, 1, raw)
        return Hover(element_id=args[0])
    if key == "search":
        _require(args, 1, raw)
        return Search(query=args[0])
    if key == "finish":
        return Finish(message=args[0] if args else "")
    if key == "fail":
        return Fail(reason=args[0] if args else "")

    raise InvalidActionError(f"Unknown action '{name}': {raw!r}")


def quote(text: str) -> str:
    escaped = (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\n", "\\n")
        .replace("\t", "\\t")
        .replace("\r", "\\r")
    )
    return f'"{escaped}"'


def format_action(action: Action) -> str:
    """Render a variant back to its wire format."""
    if isinstance(action, Click):
        return f"click({action.element_id})"
    if isinstance(action, SetValue):
        return f"setValue({action.element_id}, {quote(action.text)})"
    if isinstance(action, Navigate):
        return f"navigate({quote(action.url)})"
    if isinstance(action, GoBack):
        return "goBack()"
    if isinstance(action, Scroll):
        return "scroll()" if action.down else "scroll(false)"
    if isinstance(action, Wait):
        return f"wait({action.seconds:g})"
    if isinstance(action, Press):
        return f"press({quote(action.key)})"
    if isinstance(action, Hover):
        return f"hover({action.element_id})"
    if isinstance(action, Search):
        return f"search({quote(action.query)})"
    if isinstance(action, Finish):
        return f"finish({quote(action.message)})"
    if isinstance(action, Fail):
        return f"fail({quote(action.reason)})"
    raise InvalidActionError(f"Cannot format {action!r}")


def is_terminal(action: Action) -> bool:
    return isinstance(action, (Finish, Fail))


# ---------------------------------------------------------------------------
# Action type classification
# ---------------------------------------------------------------------------

NAVIGATION_ROLES = {"link", "tab"}
TAB_STATES = {"active", "inactive"}


def find_target(page: Page, element_id: str) -> Optional[Tag]:
    """Return the element whose id attribute is exactly ``element_id``."""
    return parse_page(page).find(id=element_id)


def has_popup_indicator(element: Tag) -> bool:
    return element.has_attr("aria-haspopup") or element.has_attr("data-has-popup")


def has_navigation_indicator(element: Tag) -> bool:
    if element.name == "a" or element.has_attr("href"):
        return True
    if (element.get("role") or "").lower() in NAVIGATION_ROLES:
        return True
    if any(attr.startswith("data-tab") for attr in element.attrs):
        return True
    if (element.get("data-state") or "").lower() in TAB_STATES:
        return True
    return element.has_attr("aria-selected")


def classify_action_type(action: Action, page: Page) -> ActionType:
    """Classify an action so verification knows what evidence to expect.

    navigate/goBack are navigation; a click on an element with a popup
    indicator is a dropdown; a click on a link or tab is navigation;
    everything else is generic.
    """
    if isinstance(action, (Navigate, GoBack)):
        return ActionType.NAVIGATION
    if isinstance(action, Click):
        target = find_target(page, action.element_id)
        if target is not None:
            if has_popup_indicator(target):
                return ActionType.DROPDOWN
            if has_navigation_indicator(target):
                return ActionType.NAVIGATION
    return ActionType.GENERIC
