from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Optional

from .cookie import parse_timestamp
from .errors import CorruptRecordError


@dataclass(slots=True)
class SessionRecord:
    id: str
    cookie: dict[str, Any] = field(default_factory=dict)

    @property
    def expires(self) -> Optional[datetime]:
        value = self.cookie.get("expires")
        return parse_timestamp(value) if value else None

    def is_expired(self, now: datetime) -> bool:
        expires = self.expires
        return expires is not None and expires <= now

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "SessionRecord":
        try:
            payload = json.loads(raw)
            record = cls(id=payload["id"], cookie=payload["cookie"])
            if not isinstance(record.id, str) or not isinstance(record.cookie, dict):
                raise TypeError("unexpected record shape")
            expires = record.cookie.get("expires")
            if expires is not None:
                parse_timestamp(expires)
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise CorruptRecordError(f"Corrupted session record: {exc}") from exc
        return record
