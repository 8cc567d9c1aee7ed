"""Shared data models for the scanner."""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple

import httpx


@dataclass(frozen=True)
class ResponseSnapshot:
    """What one fetch observed: the unit the evidence engine compares."""
    status: int = 0
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    text: str = ""
    length: int = 0
    elapsed_ms: float = 0.0

    @classmethod
    def from_text(cls, status: int, text: str, elapsed_ms: float = 0.0, headers=None):
        return cls(status=status, headers=httpx.Headers(headers or {}),
                   text=text, length=len(text), elapsed_ms=elapsed_ms)


@dataclass(frozen=True)
class Evidence:
    """Baseline-vs-probe differences. Every delta is ``current - baseline``."""
    status_delta: int = 0
    length_delta: int = 0
    time_delta_ms: float = 0.0
    keyword_hits: Tuple[str, ...] = ()
    count_delta: int = 0
    updated_count: float = 0
    # raw scalars, kept for reporting
    base_status: int = 0
    cur_status: int = 0
    base_length: int = 0
    cur_length: int = 0
    base_time_ms: float = 0.0
    cur_time_ms: float = 0.0
    base_count: int = 0
    cur_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["keyword_hits"] = list(self.keyword_hits)
        return data


@dataclass(frozen=True)
class Finding:
    """A tagged, evidenced anomaly for one probe."""
    url: str
    method: str
    param: str           # injection point: "q", "X-Filter", "Cookie:session", ...
    payload: Any
    evidence: Evidence
    tags: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "method": self.method,
            "param": self.param,
            "payload": self.payload,
            "evidence": self.evidence.to_dict(),
            "tags": list(self.tags),
        }

    def __str__(self):
        return (f"[{','.join(self.tags)}] {self.method} {self.url} "
                f"@ {self.param} payload={self.payload!r} "
                f"(HTTP {self.evidence.base_status}→{self.evidence.cur_status})")


@dataclass(frozen=True)
class Fingerprint:
    engine: str
    version: Optional[str] = None
    source: str = ""

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"engine": self.engine, "version": self.version, "source": self.source}


def findings_to_dicts(findings: List[Finding]) -> List[Dict[str, Any]]:
    return [f.to_dict() for f in findings]
