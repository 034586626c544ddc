"""CommonMark link/image destination normalization.

CommonMark allows two spellings of a destination inside ``![alt](...)``:

- angle-bracketed, ``<path with spaces.png>``, where the brackets are
  stripped and spaces are allowed;
- bare, ``path.png``, with no spaces.

Both spellings may contain backslash escapes for ASCII punctuation.
:func:`parse_destination` turns either spelling into the plain string
the resolver works with; :func:`format_destination` produces a spelling
that round-trips through it.
"""

from __future__ import annotations

import re

ESCAPABLE = frozenset("!\"#$%&'()*+,-./:;<=>?@[\\]^_`{|}~")
"""ASCII punctuation that a backslash may escape (CommonMark §2.4)."""

_NEEDS_BRACKETS_RE = re.compile(r"[\s<>]")
"""Characters that force the angle-bracketed spelling on output."""


def parse_destination(raw: str) -> str:
    """Normalize a raw markdown destination string.

    Trims surrounding whitespace, strips one pair of enclosing angle
    brackets, and resolves backslash escapes.  A backslash that is not
    followed by an escapable character is kept literally.  No
    percent-decoding or case folding is performed.

    Never raises; the result may be empty.
    """
    url = raw.strip()
    if not url:
        return url

    if len(url) >= 2 and url.startswith("<") and url.endswith(">"):
        url = url[1:-1]

    return _unescape(url)


def _unescape(text: str) -> str:
    if "\\" not in text:
        return text

    out: list[str] = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\" and i + 1 < n and text[i + 1] in ESCAPABLE:
            out.append(text[i + 1])
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)


def format_destination(path: str) -> str:
    """Spell *path* as a destination that :func:`parse_destination` recovers.

    Bare spelling is used when possible, with parentheses escaped.
    Paths containing whitespace or angle brackets (or an empty path) use
    the angle-bracketed spelling.
    """
    escaped = path.replace("\\", "\\\\")
    if not path or _NEEDS_BRACKETS_RE.search(path):
        escaped = escaped.replace("<", "\\<").replace(">", "\\>")
        return f"<{escaped}>"
    return escaped.replace("(", "\\(").replace(")", "\\)")
