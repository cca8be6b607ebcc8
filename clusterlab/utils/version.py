from __future__ import annotations

import re
from dataclasses import dataclass, field

_VERSION_RE = re.compile(r"^v?(\d+)\.(\d+)(?:\.(\d+))?(?:-([0-9A-Za-z.\-]+))?(?:\+[0-9A-Za-z.\-]+)?$")


@dataclass(frozen=True, order=True)
class KubeVersion:
    """
    A Kubernetes semantic version ("v1.19.3", "v1.20.0-beta.1.23+abc").

    at_least() ignores pre-release suffixes, so v1.19.0-beta.0 satisfies a
    v1.19.0 gate (same as comparing against "v1.19.0-0").
    """
    major: int
    minor: int
    patch: int = 0
    release: bool = True
    raw: str = field(default="", compare=False)

    @classmethod
    def parse(cls, raw: str) -> "KubeVersion":
        m = _VERSION_RE.match(raw.strip())
        if m is None:
            raise ValueError(f"Invalid Kubernetes version {raw!r}")
        major, minor, patch, pre = m.groups()
        return cls(int(major), int(minor), int(patch or 0), pre is None, raw.strip())

    def at_least(self, other: "KubeVersion | str") -> bool:
        if isinstance(other, str):
            other = KubeVersion.parse(other)
        return (self.major, self.minor, self.patch) >= (other.major, other.minor, other.patch)

    def __str__(self) -> str:
        if self.raw:
            return self.raw
        return f"v{self.major}.{self.minor}.{self.patch}"
