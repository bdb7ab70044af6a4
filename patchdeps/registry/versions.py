"""
Semantic version parsing and requirement matching.

Requirements follow the cargo dialect (a bare version is a caret
requirement) and also accept the common PEP 440 spellings `==`, `!=` and
`~=`, since packages pulled from a Python index use them.
"""

import re
from dataclasses import dataclass, field

_VERSION_RE = re.compile(r"^v?(\d+)(?:\.(\d+))?(?:\.(\d+))?(.*)$")
_COMPARATOR_RE = re.compile(r"^(==|!=|~=|>=|<=|=|>|<|~|\^)?\s*(.+)$")
_WILDCARDS = {"*", "x", "X"}


def _split_rest(rest: str) -> tuple[str, bool]:
    """Return (prerelease tag, is_post_release) for the text after x.y.z."""

    rest = rest.split("+", 1)[0]
    if not rest:
        return "", False
    stripped = rest.lstrip("-.")
    if stripped.startswith("post") or stripped.isdigit():
        return "", True
    return stripped, False


@dataclass(frozen=True, order=True)
class Version:
    major: int
    minor: int
    patch: int
    # releases sort after their prereleases and before their post releases
    rank: int = 1
    pre: str = ""
    raw: str = field(default="", compare=False)

    @classmethod
    def parse(cls, text: str) -> "Version":
        match = _VERSION_RE.match(text.strip())
        if not match:
            raise ValueError(f"invalid version: {text!r}")
        major, minor, patch, rest = match.groups()
        pre, post = _split_rest(rest)
        if pre:
            rank = 0
        elif post:
            rank = 2
        else:
            rank = 1
        return cls(
            major=int(major),
            minor=int(minor or 0),
            patch=int(patch or 0),
            rank=rank,
            pre=pre,
            raw=text.strip(),
        )

    @property
    def triple(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    @property
    def is_prerelease(self) -> bool:
        return self.rank == 0

    def __str__(self) -> str:
        return self.raw or f"{self.major}.{self.minor}.{self.patch}"


def _floor(major: int, minor: int = 0, patch: int = 0) -> Version:
    # lowest possible version with this triple, prereleases included
    return Version(major, minor, patch, rank=0, pre="")


@dataclass(frozen=True)
class _Bound:
    op: str
    version: Version

    def matches(self, v: Version) -> bool:
        if self.op == ">=":
            return v >= self.version
        if self.op == ">":
            return v > self.version
        if self.op == "<":
            return v < self.version
        if self.op == "<=":
            return v <= self.version
        if self.op == "==":
            return v.triple == self.version.triple and v.pre == self.version.pre
        if self.op == "!=":
            return not (v.triple == self.version.triple and v.pre == self.version.pre)
        raise ValueError(f"unknown operator {self.op}")


def _partial(text: str) -> tuple[list[int], str]:
    """Parse `1`, `1.2`, `1.2.3-rc.1` or `1.*` into numeric parts + prerelease."""

    text = text.strip().lstrip("v")
    parts: list[int] = []
    pieces = re.split(r"\.", text, maxsplit=2)
    pre = ""
    for idx, piece in enumerate(pieces):
        if piece in _WILDCARDS:
            break
        match = re.match(r"^(\d+)(.*)$", piece)
        if not match:
            raise ValueError(f"invalid version requirement component: {text!r}")
        parts.append(int(match.group(1)))
        tail = match.group(2)
        if tail:
            if idx != len(pieces) - 1 and not tail.startswith(("-", "+")):
                raise ValueError(f"invalid version requirement component: {text!r}")
            pre, _ = _split_rest(tail)
            break
    return parts, pre


def _comparator_bounds(op: str, text: str) -> list[_Bound]:
    if text in _WILDCARDS:
        return []
    parts, pre = _partial(text)
    if not parts:
        return []
    major = parts[0]
    minor = parts[1] if len(parts) > 1 else None
    patch = parts[2] if len(parts) > 2 else None

    if op == "^" or op == "":
        if "*" in text or text.endswith((".x", ".X")):
            op = "="
        else:
            low = Version(major, minor or 0, patch or 0, rank=0 if pre else 1, pre=pre)
            if major > 0 or minor is None:
                high = _floor(major + 1)
            elif minor > 0 or patch is None:
                high = _floor(0, minor + 1)
            else:
                high = _floor(0, 0, patch + 1)
            return [_Bound(">=", low), _Bound("<", high)]

    if op in ("=", "=="):
        if patch is not None:
            exact = Version(major, minor, patch, rank=0 if pre else 1, pre=pre)
            return [_Bound("==", exact)]
        if minor is not None:
            return [_Bound(">=", _floor(major, minor)), _Bound("<", _floor(major, minor + 1))]
        return [_Bound(">=", _floor(major)), _Bound("<", _floor(major + 1))]

    if op == "!=":
        exact = Version(major, minor or 0, patch or 0, rank=0 if pre else 1, pre=pre)
        return [_Bound("!=", exact)]

    if op == "~":
        low = Version(major, minor or 0, patch or 0, rank=0 if pre else 1, pre=pre)
        high = _floor(major, minor + 1) if minor is not None else _floor(major + 1)
        return [_Bound(">=", low), _Bound("<", high)]

    if op == "~=":
        if minor is None:
            raise ValueError(f"~= requires at least two components: {text!r}")
        low = Version(major, minor, patch or 0, rank=0 if pre else 1, pre=pre)
        high = _floor(major, minor + 1) if patch is not None else _floor(major + 1)
        return [_Bound(">=", low), _Bound("<", high)]

    if op == ">":
        if patch is not None:
            return [_Bound(">", Version(major, minor, patch, rank=0 if pre else 2, pre=pre))]
        if minor is not None:
            return [_Bound(">=", _floor(major, minor + 1))]
        return [_Bound(">=", _floor(major + 1))]

    if op == ">=":
        return [_Bound(">=", Version(major, minor or 0, patch or 0, rank=0, pre=pre))]

    if op == "<":
        return [_Bound("<", Version(major, minor or 0, patch or 0, rank=0, pre=pre))]

    if op == "<=":
        if patch is not None:
            return [_Bound("<=", Version(major, minor, patch, rank=0 if pre else 2, pre=pre))]
        if minor is not None:
            return [_Bound("<", _floor(major, minor + 1))]
        return [_Bound("<", _floor(major + 1))]

    raise ValueError(f"unsupported operator {op!r}")


@dataclass(frozen=True)
class VersionReq:
    text: str
    bounds: tuple[_Bound, ...]
    allows_prerelease: bool = False

    @classmethod
    def parse(cls, text: str) -> "VersionReq":
        text = (text or "").strip()
        if not text:
            raise ValueError("empty version requirement")

        bounds: list[_Bound] = []
        allows_pre = False
        for raw in text.split(","):
            raw = raw.strip()
            if not raw:
                raise ValueError(f"invalid version requirement: {text!r}")
            match = _COMPARATOR_RE.match(raw)
            if not match:
                raise ValueError(f"invalid version requirement: {text!r}")
            op = match.group(1) or ""
            operand = match.group(2).strip()
            bounds.extend(_comparator_bounds(op, operand))
            if "-" in operand or re.search(r"\d(a|b|rc)\d", operand):
                allows_pre = True

        return cls(text=text, bounds=tuple(bounds), allows_prerelease=allows_pre)

    def matches(self, version: Version | str) -> bool:
        if isinstance(version, str):
            version = Version.parse(version)
        if version.is_prerelease and not self.allows_prerelease:
            return False
        return all(bound.matches(version) for bound in self.bounds)

    def __str__(self) -> str:
        return self.text


def select_version(requirement: VersionReq, available: list[str]) -> str | None:
    """Highest available version matching the requirement, or None."""

    best: Version | None = None
    for candidate in available:
        try:
            version = Version.parse(candidate)
        except ValueError:
            continue
        if requirement.matches(version) and (best is None or version > best):
            best = version
    return str(best) if best is not None else None
