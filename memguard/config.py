"""Build-time configuration read from C-style ``#define`` headers."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping

_VALID_WIDTHS = frozenset({16, 32, 64})

_DEFINE = re.compile(r"^\s*#\s*define\s+([A-Za-z_]\w*)(\([^)]*\))?(?:\s+(.*))?$")
_UNDEF = re.compile(r"^\s*#\s*undef\s+([A-Za-z_]\w*)")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT = re.compile(r"//[^\n]*")
_CONTINUATION = re.compile(r"\\\r?\n")


class ConfigError(ValueError):
    """Raised when a configuration header or value is invalid."""


@dataclass(frozen=True)
class Config:
    """Target description: integer widths, float support and heap options."""

    int_width: int = 32
    long_width: int = 32
    pointer_width: int = 32
    include_64: bool = False
    exclude_float: bool = False
    include_double: bool = False
    exclude_double: bool = False
    exclude_float_print: bool = False
    float_type: str = "float"
    double_type: str = "double"
    float_precision: float = 0.00001
    double_precision: float = 1e-12
    exclude_stdlib_malloc: bool = False
    internal_heap_size_bytes: int = 256
    include_exec_time: bool = False
    include_print_formatted: bool = False
    defines: Mapping[str, str] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        for name in ("int_width", "long_width", "pointer_width"):
            width = getattr(self, name)
            if width not in _VALID_WIDTHS:
                raise ConfigError(f"{name} must be one of 16, 32 or 64, not {width}")
        for name in ("float_precision", "double_precision"):
            if not getattr(self, name) > 0:
                raise ConfigError(f"{name} must be positive")
        if self.internal_heap_size_bytes <= 0:
            raise ConfigError("internal_heap_size_bytes must be positive")

    def supports_64(self) -> bool:
        """True when 64-bit integer support is enabled or implied by a width."""
        return self.include_64 or max(
            self.int_width, self.long_width, self.pointer_width
        ) > 32

    def malloc_alignment(self) -> int:
        """Allocation alignment in bytes: the size of a pointer."""
        return self.pointer_width // 8

    def float_enabled(self) -> bool:
        """True unless single precision support is excluded."""
        return not self.exclude_float

    def double_enabled(self) -> bool:
        """True when double precision support is requested and not excluded."""
        return self.include_double and not self.exclude_double


def parse_defines(text: str) -> Dict[str, str]:
    """Return the active ``#define`` names of a header, mapped to their values.

    Commented-out definitions are ignored; ``#undef`` removes a name.
    Function-like macros are keyed by their bare name.
    """
    text = _CONTINUATION.sub(" ", text)
    text = _BLOCK_COMMENT.sub(" ", text)
    if "/*" in text:
        raise ConfigError("unterminated block comment")
    text = _LINE_COMMENT.sub("", text)

    defines: Dict[str, str] = {}
    for line in text.splitlines():
        match = _DEFINE.match(line)
        if match:
            defines[match.group(1)] = (match.group(3) or "").strip()
            continue
        match = _UNDEF.match(line)
        if match:
            defines.pop(match.group(1), None)
    return defines


def _parse_int(name: str, value: str) -> int:
    cleaned = value.strip().strip("()").strip().rstrip("uUlL")
    try:
        return int(cleaned, 0)
    except ValueError:
        raise ConfigError(f"{name} needs an integer value, got {value!r}") from None


def _parse_float(name: str, value: str) -> float:
    cleaned = value.strip().strip("()").strip().rstrip("fFlL")
    try:
        return float(cleaned)
    except ValueError:
        raise ConfigError(f"{name} needs a number, got {value!r}") from None


def _parse_type(name: str, value: str) -> str:
    if not value.strip():
        raise ConfigError(f"{name} needs a type name")
    return value.strip()


_FLAGS = {
    "UNITY_INCLUDE_64": "include_64",
    "UNITY_EXCLUDE_FLOAT": "exclude_float",
    "UNITY_INCLUDE_DOUBLE": "include_double",
    "UNITY_EXCLUDE_DOUBLE": "exclude_double",
    "UNITY_EXCLUDE_FLOAT_PRINT": "exclude_float_print",
    "UNITY_EXCLUDE_STDLIB_MALLOC": "exclude_stdlib_malloc",
    "UNITY_INCLUDE_EXEC_TIME": "include_exec_time",
    "UNITY_INCLUDE_PRINT_FORMATTED": "include_print_formatted",
}

_VALUES: Dict[str, tuple[str, Callable[[str, str], object]]] = {
    "UNITY_INT_WIDTH": ("int_width", _parse_int),
    "UNITY_LONG_WIDTH": ("long_width", _parse_int),
    "UNITY_POINTER_WIDTH": ("pointer_width", _parse_int),
    "UNITY_INTERNAL_HEAP_SIZE_BYTES": ("internal_heap_size_bytes", _parse_int),
    "UNITY_FLOAT_PRECISION": ("float_precision", _parse_float),
    "UNITY_DOUBLE_PRECISION": ("double_precision", _parse_float),
    "UNITY_FLOAT_TYPE": ("float_type", _parse_type),
    "UNITY_DOUBLE_TYPE": ("double_type", _parse_type),
}


def load_config(text: str) -> Config:
    """Build a :class:`Config` from the text of a configuration header."""
    defines = parse_defines(text)
    options: Dict[str, object] = {}
    for name, value in defines.items():
        if name in _FLAGS:
            options[_FLAGS[name]] = True
        elif name in _VALUES:
            attribute, parser = _VALUES[name]
            options[attribute] = parser(name, value)
    return Config(defines=dict(defines), **options)