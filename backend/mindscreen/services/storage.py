from __future__ import annotations                                  # lets Python treat type hints as strings (deferred evaluation)

from contextlib import contextmanager
from typing import Dict, Iterator, Optional, TypedDict              # defines the shape of a stored session
import threading                                                    # sessions are touched from FastAPI's worker threads
import copy                                                         # callers get copies, so a failed transition can't corrupt the stored session
from datetime import datetime, timezone

from mindscreen.services.collection import AnswerCollection


class CollectionSession(TypedDict, total=False):
    run_id: str
    version: str
    questionnaire_id: str
    machine: Optional[AnswerCollection]   # None once the run is retired
    response_code: Optional[str]          # set once the submission is persisted
    state: str                            # final phase of a retired run
    progress: Dict[str, int]              # final progress of a retired run
    created_at: str
    updated_at: str

# ---- Helper function ----
def _ts_utc_iso() -> str:
    now_utc = datetime.now(timezone.utc)
    return now_utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")

# ---- Store Implementation ----

class InMemorySessionStore:
    def __init__(self) -> None:

        self._sessions: Dict[str, CollectionSession] = {}   # run_id -> CollectionSession
        self._run_locks: Dict[str, threading.RLock] = {}    # run_id -> lock held across read-modify-write
        self._lock = threading.RLock()

    def create_session(self, session: CollectionSession) -> None:   # insert a brand new session, fails if run_id already exists
        if "run_id" not in session or not session["run_id"]:
            raise ValueError("create_session: session.run_id is required.")

        with self._lock:
            if session["run_id"] in self._sessions:
                raise ValueError(f"create_session: run_id '{session['run_id']}' already exists.")

            session = copy.deepcopy(session)
            session.setdefault("created_at", _ts_utc_iso())
            session.setdefault("updated_at", session["created_at"])

            self._sessions[session["run_id"]] = session
            self._run_locks[session["run_id"]] = threading.RLock()

    @contextmanager
    def locked(self, run_id: str) -> Iterator[None]:
        # serializes get -> mutate copy -> replace for one run
        with self._lock:
            run_lock = self._run_locks.get(run_id)
        if run_lock is None:    # unknown run; the caller's lookup reports it
            yield
            return
        with run_lock:
            yield

    def get_session(self, run_id: str) -> Optional[CollectionSession]:
        with self._lock:
            session = self._sessions.get(run_id)
            return copy.deepcopy(session) if session else None

    def replace_session(self, session: CollectionSession) -> CollectionSession:
        # callers mutate the copy from get_session() and write it back here

        if "run_id" not in session or not session["run_id"]:
            raise ValueError("replace_session: session.run_id is required")

        with self._lock:
            run_id = session["run_id"]
            if run_id not in self._sessions:
                raise KeyError(f"replace_session: run_id '{run_id}' not found")

            new_session = copy.deepcopy(session)
            new_session["updated_at"] = _ts_utc_iso()
            self._sessions[run_id] = new_session
            return copy.deepcopy(new_session)

    def retire_session(self, session: CollectionSession) -> CollectionSession:
        # terminal runs keep only what resume needs; the state machine is dropped
        machine = session.get("machine")
        slim: CollectionSession = {
            "run_id": session["run_id"],
            "version": session.get("version", ""),
            "questionnaire_id": session.get("questionnaire_id", ""),
            "machine": None,
            "response_code": session.get("response_code"),
            "state": machine.phase.value if machine is not None else session.get("state", ""),
            "progress": dict(machine.progress) if machine is not None else dict(session.get("progress") or {}),
            "created_at": session.get("created_at", _ts_utc_iso()),
        }
        return self.replace_session(slim)

    def delete_session(self, run_id: str) -> None:
        with self._lock:
            self._sessions.pop(run_id, None)
            self._run_locks.pop(run_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
