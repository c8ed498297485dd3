# src/sealenv/dotenv.py
"""The dotenv plaintext format, as read and written by the sops dotenv store."""

import re
from typing import Dict, Mapping

from .errors import ValidationError

NAME_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")

# Only '\n' separates lines; these characters are escaped inside values.
_ESCAPES = {"\\": "\\\\", "\n": "\\n", "\r": "\\r"}
_UNESCAPES = {"\\": "\\", "n": "\n", "r": "\r"}
_ESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)


def validate_name(name: str) -> str:
    """
    Check that `name` can be used as a variable name.

    Raises:
        ValidationError: If it is empty, contains '=' or a newline, or is not
            a shell identifier.
    """
    if not NAME_RE.fullmatch(name or ""):
        raise ValidationError(
            f"Invalid variable name {name!r}: use letters, digits and '_' and do not start with a digit."
        )
    return name


def escape_value(value: str) -> str:
    return "".join(_ESCAPES.get(ch, ch) for ch in value)


def unescape_value(value: str) -> str:
    # Unknown sequences such as '\t' are kept verbatim.
    return _ESCAPE_RE.sub(lambda m: _UNESCAPES.get(m.group(1), m.group(0)), value)


def parse(text: str) -> Dict[str, str]:
    """
    Parse dotenv text into a dict, preserving order.

    Blank lines and '#' comments are skipped; everything after the first '='
    is the value, with '\\n', '\\r' and '\\\\' unescaped. A trailing carriage
    return (CRLF files) is dropped.

    Raises:
        ValidationError: On a line without '=', a bad name or a duplicate name.
    """
    mapping: Dict[str, str] = {}
    for number, line in enumerate(text.split("\n"), start=1):
        if line.endswith("\r"):
            line = line[:-1]
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in line:
            raise ValidationError(f"Line {number} is not of the form NAME=value.")
        name, value = line.split("=", 1)
        validate_name(name)
        if name in mapping:
            raise ValidationError(f"Variable '{name}' is defined more than once (line {number}).")
        mapping[name] = unescape_value(value)
    return mapping


def render(mapping: Mapping[str, str]) -> str:
    """Render a mapping as dotenv text, escaping backslashes and line breaks in values."""
    lines = []
    for name, value in mapping.items():
        validate_name(name)
        lines.append(f"{name}={escape_value(str(value))}")
    return "\n".join(lines) + ("\n" if lines else "")
