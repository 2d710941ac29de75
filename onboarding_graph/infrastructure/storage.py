"""
SESSION & GRAPH STORAGE
Key-based CRUD for graphs and sessions. The engine does not care which
backend is used; both keep the dynamic-state payload exactly as given.

Backends:
- MemoryStorage: process-local, hands out deep copies
- JSONFileStorage: one file per record, atomic writes, SHA256 checksum
"""
import hashlib
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

from onboarding_graph.core.ontology import GraphSpec
from onboarding_graph.core.session import Session

# Schema version for the on-disk envelope
SCHEMA_VERSION = "1.0"


class StorageError(Exception):
    """Base class for storage failures."""
    pass


class GraphNotFoundError(StorageError, KeyError):
    def __init__(self, graph_id: str):
        self.graph_id = graph_id
        super().__init__(f"Graph not found: {graph_id}")

    def __str__(self):
        return self.args[0]


class SessionNotFoundError(StorageError, KeyError):
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")

    def __str__(self):
        return self.args[0]


class Storage(ABC):
    @abstractmethod
    def save_graph(self, graph: GraphSpec):
        ...

    @abstractmethod
    def get_graph(self, graph_id: str) -> GraphSpec:
        ...

    @abstractmethod
    def save_session(self, session: Session):
        ...

    @abstractmethod
    def get_session(self, session_id: str) -> Session:
        ...

    @abstractmethod
    def list_sessions(self, user_id: Optional[str] = None) -> List[Session]:
        ...


class MemoryStorage(Storage):
    def __init__(self):
        self._graphs: Dict[str, GraphSpec] = {}
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.RLock()

    def save_graph(self, graph: GraphSpec):
        with self._lock:
            self._graphs[graph.id] = graph.model_copy(deep=True)

    def get_graph(self, graph_id: str) -> GraphSpec:
        with self._lock:
            if graph_id not in self._graphs:
                raise GraphNotFoundError(graph_id)
            return self._graphs[graph_id].model_copy(deep=True)

    def save_session(self, session: Session):
        with self._lock:
            self._sessions[session.id] = session.model_copy(deep=True)

    def get_session(self, session_id: str) -> Session:
        with self._lock:
            if session_id not in self._sessions:
                raise SessionNotFoundError(session_id)
            return self._sessions[session_id].model_copy(deep=True)

    def list_sessions(self, user_id: Optional[str] = None) -> List[Session]:
        with self._lock:
            return [
                s.model_copy(deep=True)
                for s in self._sessions.values()
                if user_id is None or s.user_id == user_id
            ]


class JSONFileStorage(Storage):
    """
    Directory-backed storage: `<root>/graphs/<id>.json`, `<root>/sessions/<id>.json`.

    Each file is an envelope {version, timestamp, payload, checksum}; the
    checksum is the SHA256 of the payload serialized with sorted keys.
    """

    def __init__(self, root: str):
        self.logger = logging.getLogger("Onboarding.Storage")
        self.root = root
        self._lock = threading.RLock()
        os.makedirs(os.path.join(root, "graphs"), exist_ok=True)
        os.makedirs(os.path.join(root, "sessions"), exist_ok=True)

    def _path(self, kind: str, key: str) -> str:
        safe = key.replace(os.sep, "_")
        return os.path.join(self.root, kind, f"{safe}.json")

    @staticmethod
    def _calculate_checksum(payload: Dict) -> str:
        serialized = json.dumps(payload, sort_keys=True)
        return hashlib.sha256(serialized.encode()).hexdigest()

    def _write(self, path: str, payload: Dict):
        """Atomic write: temp file then os.replace."""
        data = {
            "version": SCHEMA_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "payload": payload,
            "checksum": self._calculate_checksum(payload),
        }
        temp_path = path + ".tmp"
        with self._lock:
            with open(temp_path, "w") as f:
                json.dump(data, f, indent=2)
            os.replace(temp_path, path)

    def _read(self, path: str) -> Dict:
        with open(path, "r") as f:
            data = json.load(f)

        version = data.get("version", "unknown")
        if version != SCHEMA_VERSION:
            self.logger.warning(f"Schema version mismatch in {path}: {version} != {SCHEMA_VERSION}")

        payload = data.get("payload")
        if payload is None:
            raise StorageError(f"Malformed record (no payload): {path}")
        if "checksum" in data and data["checksum"] != self._calculate_checksum(payload):
            self.logger.error(f"Checksum mismatch - record may be corrupted: {path}")
            raise StorageError(f"Checksum mismatch: {path}")
        return payload

    def save_graph(self, graph: GraphSpec):
        self._write(self._path("graphs", graph.id), graph.model_dump(mode="json"))

    def get_graph(self, graph_id: str) -> GraphSpec:
        path = self._path("graphs", graph_id)
        if not os.path.exists(path):
            raise GraphNotFoundError(graph_id)
        return GraphSpec.model_validate(self._read(path))

    def save_session(self, session: Session):
        self._write(self._path("sessions", session.id), session.model_dump(mode="json"))

    def get_session(self, session_id: str) -> Session:
        path = self._path("sessions", session_id)
        if not os.path.exists(path):
            raise SessionNotFoundError(session_id)
        return Session.model_validate(self._read(path))

    def list_sessions(self, user_id: Optional[str] = None) -> List[Session]:
        sessions = []
        directory = os.path.join(self.root, "sessions")
        for name in sorted(os.listdir(directory)):
            if not name.endswith(".json"):
                continue
            session = Session.model_validate(self._read(os.path.join(directory, name)))
            if user_id is None or session.user_id == user_id:
                sessions.append(session)
        return sessions
