"""Core data models. A Thought lives in one orbit. The store narrates what happens to it."""

from __future__ import annotations

import math
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum


class OrbitLevel(str, Enum):
    SURVIVAL = "SURVIVAL"    # lo inmediato, lo cotidiano
    GROWTH = "GROWTH"        # habilidades, proyectos
    VISION = "VISION"        # aspiraciones a largo plazo
    FLOATING = "FLOATING"    # reservado, el clasificador nunca lo asigna


CLASSIFIABLE_LEVELS = (OrbitLevel.SURVIVAL, OrbitLevel.GROWTH, OrbitLevel.VISION)

# timestamps are stored as SQLite INTEGER (signed 64-bit)
_MAX_TIMESTAMP = 2**63 - 1


_clock_lock = threading.Lock()
_last_timestamp = [0]


def now_ms() -> int:
    """Wall-clock milliseconds, strictly increasing within this process."""
    with _clock_lock:
        ts = max(int(time.time() * 1000), _last_timestamp[0] + 1)
        _last_timestamp[0] = ts
        return ts


def new_id() -> str:
    return f"REC_{uuid.uuid4().hex[:12]}"


@dataclass
class Thought:
    """Un pensamiento en órbita. El contenido no cambia; el nivel sí."""

    content: str
    level: OrbitLevel = OrbitLevel.FLOATING
    timestamp: int = field(default_factory=now_ms)
    reasoning: str = ""
    completed: bool = False
    connections: list[str] = field(default_factory=list)  # ids recuperados al crear
    vector: list[float] | None = None
    id: str = field(default_factory=new_id)
    similarity: float | None = None  # solo en resultados de búsqueda, nunca se guarda

    def with_similarity(self, score: float) -> Thought:
        return replace(self, similarity=score, connections=list(self.connections))

    def to_dict(self) -> dict:
        """JSON-safe representation. Ephemeral fields are left out."""
        return {
            "id": self.id,
            "content": self.content,
            "level": self.level.value,
            "timestamp": self.timestamp,
            "reasoning": self.reasoning,
            "completed": self.completed,
            "connections": list(self.connections),
            "vector": list(self.vector) if self.vector is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> Thought:
        """Parse an exported record. Raises ValueError on anything malformed."""
        if not isinstance(data, dict):
            raise ValueError(f"record must be an object, got {type(data).__name__}")
        thought_id = data.get("id")
        content = data.get("content")
        if not isinstance(thought_id, str) or not thought_id:
            raise ValueError("record is missing a string 'id'")
        if not isinstance(content, str) or not content:
            raise ValueError(f"record {thought_id} is missing 'content'")

        try:
            level = OrbitLevel(data.get("level", OrbitLevel.FLOATING.value))
        except ValueError:
            raise ValueError(
                f"record {thought_id} has unknown level {data.get('level')!r}"
            ) from None

        connections = data.get("connections") or []
        if not isinstance(connections, list):
            raise ValueError(f"record {thought_id}: 'connections' must be a list")

        vector = data.get("vector")
        if vector is not None:
            if not isinstance(vector, list):
                raise ValueError(f"record {thought_id}: 'vector' must be a list")
            try:
                vector = [float(x) for x in vector]
            except (TypeError, ValueError):
                raise ValueError(
                    f"record {thought_id}: 'vector' must hold numbers"
                ) from None
            if not all(math.isfinite(x) for x in vector):
                raise ValueError(f"record {thought_id}: 'vector' holds NaN or infinity")

        timestamp = data.get("timestamp")
        if timestamp is None:
            timestamp = now_ms()
        elif isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise ValueError(f"record {thought_id}: 'timestamp' must be a number")
        elif not -_MAX_TIMESTAMP - 1 <= timestamp <= _MAX_TIMESTAMP:
            raise ValueError(f"record {thought_id}: 'timestamp' out of range")

        completed = data.get("completed", False)
        if not isinstance(completed, bool):
            raise ValueError(f"record {thought_id}: 'completed' must be true or false")

        return cls(
            id=thought_id,
            content=content,
            level=level,
            timestamp=int(timestamp),
            reasoning=str(data.get("reasoning") or ""),
            completed=completed,
            connections=[str(c) for c in connections],
            vector=vector,
        )


class EventKind(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    SYNC = "SYNC"
    QUERY = "QUERY"


@dataclass
class StoreEvent:
    """Lo que el store acaba de hacer. Los suscriptores deciden cómo mostrarlo."""

    kind: EventKind
    subject: str
    ok: bool = True
    message: str = ""
    at: float = field(default_factory=time.time)
