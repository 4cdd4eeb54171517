from __future__ import annotations

"""Branching conversation sessions.

A *branch* is a named, append-only list of :class:`~ollabranch.models.Interaction`
objects targeting one model.  The registry keeps every branch plus two
pieces of per-instance state:

* ``current_model`` – the model the caller spoke to last;
* one *current branch* per model name.

Continuation tokens for the next turn on a branch are always the ``context``
of that branch's last response.

Thread safety
-------------
All reads and mutations go through one re-entrant lock owned by the registry
instance.  Every critical section is short and does no I/O, so several caller
threads (or asyncio tasks) may share one registry.
"""

import threading
from typing import Dict, List, Optional, Tuple

from loguru import logger

from ollabranch.errors import SessionStateError
from ollabranch.models import Interaction, Request, Response


class Session:
    """One branch: its name, target model and interaction history."""

    def __init__(self, name: str, model: str, interactions: Optional[List[Interaction]] = None) -> None:
        self.name = name
        self.model = model
        self._interactions: Optional[List[Interaction]] = list(interactions) if interactions is not None else None

    def __repr__(self) -> str:
        return f"Session(name={self.name!r}, model={self.model!r}, turns={len(self)})"

    def __len__(self) -> int:
        return len(self._interactions) if self._interactions else 0

    @property
    def interactions(self) -> Tuple[Interaction, ...]:
        """Read-only snapshot of the history."""
        return tuple(self._interactions or ())

    @property
    def context(self) -> Optional[List[int]]:
        """Tokens to send with the next request, or None for an empty branch."""
        if not self._interactions:
            return None
        return list(self._interactions[-1].response.context)

    def _append(self, interaction: Interaction) -> None:
        if self._interactions is None:
            self._interactions = []
        self._interactions.append(interaction)


class SessionRegistry:
    """Keyed store of branches with a current-branch pointer per model."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._current_branch: Dict[str, str] = {}
        self._current_model: Optional[str] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def current_model(self) -> Optional[str]:
        with self._lock:
            return self._current_model

    def branches(self) -> List[str]:
        with self._lock:
            return sorted(self._sessions)

    def get_branch(self, name: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(name)

    def session(self, model: str) -> Optional[Session]:
        """The session currently bound to *model*, if any."""
        with self._lock:
            branch = self._current_branch.get(model)
            return self._sessions.get(branch) if branch is not None else None

    def current_session(self) -> Optional[Session]:
        with self._lock:
            if self._current_model is None:
                return None
            return self.session(self._current_model)

    def current_branch(self, model: Optional[str] = None) -> Optional[str]:
        with self._lock:
            model = model or self._current_model
            return self._current_branch.get(model) if model else None

    def current_context(self) -> Optional[List[int]]:
        """Last response tokens of the current session, None when there are none."""
        with self._lock:
            session = self.current_session()
            return session.context if session is not None else None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def ensure_session(self, model: str) -> Session:
        """Return the session bound to *model*, creating an empty one if needed.

        Either way *model* becomes the current model.
        """
        if not model:
            raise SessionStateError("A session needs a model name")
        with self._lock:
            session = self.session(model)
            if session is None:
                session = Session(name=model, model=model)
                self._sessions[model] = session
                self._current_branch[model] = model
                logger.debug(f"[SESSIONS] New session for model {model}")
            self._current_model = model
            return session

    def checkout(self, model: str) -> Tuple[str, Optional[List[int]]]:
        """Atomically ensure the session for *model*; returns (branch name, context)."""
        with self._lock:
            session = self.ensure_session(model)
            return session.name, session.context

    def clone_branch(self, new_name: str) -> Session:
        """Copy the current session into a new branch and make it current.

        Raises
        ------
        SessionStateError
            When there is no current session to branch from.
        """
        if not new_name:
            raise SessionStateError("A branch needs a name")
        with self._lock:
            source = self.current_session()
            if source is None:
                raise SessionStateError(
                    "Cannot branch: no current session",
                    data={"branch": new_name, "model": self._current_model},
                )
            if new_name in self._sessions and new_name != source.name:
                logger.warning(f"[SESSIONS] Branch {new_name} already exists and is replaced")
            clone = Session(name=new_name, model=source.model, interactions=list(source.interactions))
            self._sessions[new_name] = clone
            self._current_branch[source.model] = new_name
            logger.info(f"[SESSIONS] Branched {source.name} -> {new_name} ({len(clone)} turns)")
            return clone

    def switch_branch(self, name: str) -> Session:
        """Make an existing branch current for its model (and that model current)."""
        with self._lock:
            session = self._sessions.get(name)
            if session is None:
                raise SessionStateError(f"Unknown branch {name}", data={"branches": sorted(self._sessions)})
            self._current_branch[session.model] = name
            self._current_model = session.model
            return session

    def append(self, request: Request, response: Response, branch: Optional[str] = None) -> Interaction:
        """Record one turn on *branch* (default: the current session)."""
        with self._lock:
            if branch is not None:
                session = self._sessions.get(branch)
                if session is None:
                    raise SessionStateError(f"Unknown branch {branch}")
            else:
                session = self.current_session()
                if session is None:
                    raise SessionStateError("Cannot record a turn: no current session")
            interaction = Interaction.record(request, response)
            session._append(interaction)
            return interaction

    def clear(self) -> None:
        """Drop every branch; the current model (if any) gets a fresh empty one."""
        with self._lock:
            model = self._current_model
            self._sessions.clear()
            self._current_branch.clear()
            self._current_model = None
            if model:
                self.ensure_session(model)
            logger.info("[SESSIONS] Cleared all branches")
