"""Target descriptions and ``cfg()`` predicate evaluation."""

from __future__ import annotations

import platform
import re
import sys
from dataclasses import dataclass, field
from typing import Iterator

from system_deps_meta.errors import InvalidPredicateError, UnsupportedPredicateError

_UNIX_OSES = {
    "linux",
    "macos",
    "ios",
    "tvos",
    "watchos",
    "android",
    "freebsd",
    "netbsd",
    "openbsd",
    "dragonfly",
    "solaris",
    "illumos",
    "haiku",
    "fuchsia",
    "emscripten",
    "redox",
    "aix",
}
_OS_ALIASES = {"darwin": "macos", "win32": "windows", "mingw32": "windows"}
_BIG_ENDIAN_ARCHES = {"s390x", "powerpc", "powerpc64", "mips", "mips64", "sparc", "sparc64"}
_64_BIT_ARCHES = {
    "x86_64",
    "aarch64",
    "riscv64",
    "powerpc64",
    "mips64",
    "s390x",
    "loongarch64",
    "sparc64",
    "wasm64",
}


def _normalize_arch(raw: str) -> tuple[str, str]:
    """Return ``(arch, endian)`` for the architecture component of a triple."""

    arch = raw.lower()
    endian = "little"
    if re.fullmatch(r"i[3-6]86", arch):
        arch = "x86"
    elif arch in {"amd64", "x86_64"}:
        arch = "x86_64"
    elif arch == "arm64":
        arch = "aarch64"
    elif arch.startswith("aarch64"):
        endian = "big" if arch.endswith("_be") else "little"
        arch = "aarch64"
    elif arch.startswith(("armv", "thumbv")) or arch == "arm":
        arch = "arm"
    elif arch.startswith("riscv64"):
        arch = "riscv64"
    elif arch.startswith("riscv32"):
        arch = "riscv32"
    elif arch in {"powerpc64le", "ppc64le"}:
        arch = "powerpc64"
    elif arch in {"mipsel", "mips64el"}:
        arch = arch[:-2]
    elif arch in {"mips", "mips64", "powerpc", "powerpc64", "sparc64", "s390x"}:
        endian = "big"
    if arch in _BIG_ENDIAN_ARCHES and raw.lower() not in {"powerpc64le", "ppc64le", "mipsel", "mips64el"}:
        endian = "big"
    return arch, endian


@dataclass(frozen=True, slots=True)
class Target:
    """Properties of the platform that ``cfg()`` predicates are evaluated against."""

    arch: str
    vendor: str
    os: str
    env: str = ""
    families: tuple[str, ...] = ()
    endian: str = "little"
    pointer_width: str = "64"
    triple: str = field(default="", compare=False)

    @property
    def family(self) -> str:
        return self.families[0] if self.families else ""

    @classmethod
    def from_triple(cls, triple: str) -> "Target":
        """Parse an ``arch-vendor-os[-env]`` triple such as ``x86_64-unknown-linux-gnu``."""

        parts = [part for part in triple.strip().split("-") if part]
        if len(parts) < 2:
            raise ValueError(f"Invalid target triple: {triple!r}")

        arch, endian = _normalize_arch(parts[0])
        if len(parts) == 2:
            vendor, os_name, env = "unknown", parts[1], ""
        elif len(parts) == 3 and parts[1] in {"linux", "windows", "none"}:
            # e.g. aarch64-linux-android
            vendor, os_name, env = "unknown", parts[1], parts[2]
        else:
            vendor, os_name = parts[1], parts[2]
            env = parts[3] if len(parts) > 3 else ""

        os_name = _OS_ALIASES.get(os_name, os_name)
        if env == "android" or os_name == "androideabi":
            os_name, env = "android", ""
        elif env.startswith("gnu"):
            env = "gnu"
        elif env.startswith("musl"):
            env = "musl"
        elif env.startswith("eabi"):
            env = ""
        if os_name == "macos" or vendor == "apple":
            vendor = "apple"

        families: list[str] = []
        if os_name == "windows":
            families.append("windows")
        elif os_name in _UNIX_OSES:
            families.append("unix")
        if arch in {"wasm32", "wasm64"}:
            families.append("wasm")

        if arch in _64_BIT_ARCHES:
            width = "64"
        elif arch in {"avr", "msp430"}:
            width = "16"
        else:
            width = "32"

        return cls(
            arch=arch,
            vendor=vendor,
            os=os_name,
            env=env,
            families=tuple(families),
            endian=endian,
            pointer_width=width,
            triple=triple,
        )

    @classmethod
    def host(cls) -> "Target":
        """Describe the interpreter's host platform."""

        return cls.from_triple(host_triple())

    def matches(self, key: str, value: str) -> bool | None:
        """Evaluate ``key = "value"``; ``None`` means the key is not a target property."""

        if key == "target_family":
            return value in self.families
        attribute = {
            "target_os": self.os,
            "target_arch": self.arch,
            "target_env": self.env,
            "target_vendor": self.vendor,
            "target_endian": self.endian,
            "target_pointer_width": self.pointer_width,
        }.get(key)
        if attribute is None:
            return None
        return attribute == value


def host_triple() -> str:
    machine = platform.machine().lower() or "x86_64"
    arch = {"amd64": "x86_64", "arm64": "aarch64", "x86": "i686", "i386": "i686"}.get(machine, machine)
    if sys.platform.startswith("win"):
        return f"{arch}-pc-windows-msvc"
    if sys.platform == "darwin":
        return f"{arch}-apple-darwin"
    if sys.platform.startswith("linux"):
        libc, _ = platform.libc_ver()
        return f"{arch}-unknown-linux-{'gnu' if libc in ('glibc', '') else 'musl'}"
    return f"{arch}-unknown-{sys.platform.rstrip('0123456789')}"


# -- expression tree ----------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Predicate:
    key: str
    value: str | None = None

    def evaluate(self, target: Target, source: str) -> bool:
        if self.value is None:
            if self.key in {"unix", "windows"}:
                return self.key in target.families
            raise UnsupportedPredicateError(source)
        result = target.matches(self.key, self.value)
        if result is None:
            raise UnsupportedPredicateError(source)
        return result


@dataclass(frozen=True, slots=True)
class Combinator:
    operator: str
    operands: tuple["Expression", ...]

    def evaluate(self, target: Target, source: str) -> bool:
        # Every operand is evaluated so unsupported predicates are never hidden.
        results = [operand.evaluate(target, source) for operand in self.operands]
        if self.operator == "all":
            return all(results)
        if self.operator == "any":
            return any(results)
        return not results[0]


Expression = Predicate | Combinator

_TOKEN_RE = re.compile(r'\s*(?:(?P<ident>[A-Za-z_][A-Za-z0-9_]*)|(?P<string>"(?:[^"\\]|\\.)*")|(?P<punct>[(),=]))')


def _tokenize(source: str) -> Iterator[tuple[str, str]]:
    position = 0
    stripped = source.rstrip()
    while position < len(stripped):
        match = _TOKEN_RE.match(stripped, position)
        if match is None:
            raise InvalidPredicateError(source, f"unexpected character at offset {position}")
        position = match.end()
        kind = match.lastgroup
        text = match.group(kind)
        if kind == "string":
            text = re.sub(r"\\(.)", r"\1", text[1:-1])
        yield kind, text


class _Parser:
    def __init__(self, source: str) -> None:
        self.source = source
        self.tokens = list(_tokenize(source))
        self.index = 0

    def _peek(self) -> tuple[str, str] | None:
        return self.tokens[self.index] if self.index < len(self.tokens) else None

    def _next(self) -> tuple[str, str]:
        token = self._peek()
        if token is None:
            raise InvalidPredicateError(self.source, "unexpected end of expression")
        self.index += 1
        return token

    def _expect(self, text: str) -> None:
        kind, value = self._next()
        if kind != "punct" or value != text:
            raise InvalidPredicateError(self.source, f"expected '{text}', found '{value}'")

    def parse(self) -> Expression:
        expression = self._expression()
        if self._peek() is not None:
            raise InvalidPredicateError(self.source, f"trailing input '{self._peek()[1]}'")
        return expression

    def _expression(self) -> Expression:
        kind, name = self._next()
        if kind != "ident":
            raise InvalidPredicateError(self.source, f"expected identifier, found '{name}'")
        token = self._peek()
        if token == ("punct", "(") and name in {"all", "any", "not"}:
            self.index += 1
            operands = self._operands()
            if name == "not" and len(operands) != 1:
                raise InvalidPredicateError(self.source, "not() takes exactly one predicate")
            return Combinator(name, tuple(operands))
        if token == ("punct", "="):
            self.index += 1
            value_kind, value = self._next()
            if value_kind != "string":
                raise InvalidPredicateError(self.source, f"expected a quoted value for '{name}'")
            return Predicate(name, value)
        return Predicate(name)

    def _operands(self) -> list[Expression]:
        operands: list[Expression] = []
        while self._peek() != ("punct", ")"):
            operands.append(self._expression())
            if self._peek() == ("punct", ","):
                self.index += 1
            elif self._peek() != ("punct", ")"):
                raise InvalidPredicateError(self.source, "expected ',' or ')'")
        self._expect(")")
        return operands


def parse_predicate(source: str) -> Expression:
    """Parse the body of a ``cfg(...)`` key."""

    if not source.strip():
        raise InvalidPredicateError(source, "empty expression")
    return _Parser(source).parse()


def evaluate_predicate(source: str, target: Target) -> bool:
    return parse_predicate(source).evaluate(target, source)


def split_cfg_key(key: str) -> str | None:
    """Return the predicate body of a ``cfg(...)`` key, or ``None`` for regular keys."""

    if not key.startswith("cfg("):
        return None
    if not key.endswith(")"):
        raise UnsupportedPredicateError(key)
    return key[len("cfg(") : -1]


__all__ = [
    "Combinator",
    "Expression",
    "Predicate",
    "Target",
    "evaluate_predicate",
    "host_triple",
    "parse_predicate",
    "split_cfg_key",
]
