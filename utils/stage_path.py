# utils/stage_path.py
"""
Stage path: the ordered production stages of an element type.

Stored as ``INTEGER[]`` on Postgres and as the brace text ``{76,75,74}``
everywhere else; loaded back as a ``StagePath`` tuple.
"""
from __future__ import annotations

from typing import Iterable, Optional, Union

from sqlalchemy import Text
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.types import Integer, TypeDecorator

from errors import BadInput, InvariantViolation


class StagePath(tuple):
    """Immutable ordered sequence of stage ids."""

    def __new__(cls, stages: Iterable[int] = ()):
        return super().__new__(cls, (int(s) for s in stages))

    @classmethod
    def parse(cls, raw: Union[str, Iterable[int], None]) -> "StagePath":
        """Accept ``"{76,75}"``, ``"76,75"`` or an int sequence."""
        if raw is None:
            return cls()
        if isinstance(raw, str):
            body = raw.strip().strip("{}[]").strip()
            if not body:
                return cls()
            try:
                return cls(int(p.strip()) for p in body.split(",") if p.strip())
            except ValueError:
                raise BadInput(f"Unparseable stage path: {raw!r}")
        return cls(raw)

    def serialise(self) -> str:
        return "{" + ",".join(str(s) for s in self) + "}"

    def require(self) -> "StagePath":
        if not self:
            raise InvariantViolation("Element type has an empty stage path")
        return self

    def first(self) -> int:
        return self.require()[0]

    def last(self) -> int:
        return self.require()[-1]

    def next_after(self, current: int) -> Optional[int]:
        """Stage following ``current``; None after the final stage."""
        path = self.require()
        try:
            idx = path.index(current)
        except ValueError:
            raise InvariantViolation(f"Stage {current} is not on path {path.serialise()}")
        return path[idx + 1] if idx + 1 < len(path) else None

    def contains(self, stage_id: int) -> bool:
        return stage_id in self

    def __repr__(self) -> str:
        return f"StagePath({self.serialise()})"


class StagePathType(TypeDecorator):
    impl = Text
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(ARRAY(Integer))
        return dialect.type_descriptor(Text())

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        path = StagePath.parse(value)
        if dialect.name == "postgresql":
            return list(path)
        return path.serialise()

    def process_result_value(self, value, dialect):
        if value is None:
            return StagePath()
        return StagePath.parse(value)
