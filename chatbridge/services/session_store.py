import logging
from typing import Callable
from uuid import uuid4

from chatbridge.db.session_repo import SessionRepo


logger = logging.getLogger(__name__)

ResetListener = Callable[[str | None], None]


class SessionStore:
    """Single writer of one chat instance's session id"""

    def __init__(self, instance_id: str, repo: SessionRepo) -> None:
        self.instance_id = instance_id
        self._repo = repo
        self._reset_listeners: list[ResetListener] = []

    def get(self) -> str:
        session_id = self._repo.get_session_id(self.instance_id)
        if session_id is None:
            session_id = uuid4().hex
            self._repo.save_session_id(self.instance_id, session_id)
            logger.info("Started session %s for %s", session_id, self.instance_id)
        return session_id

    def peek(self) -> str | None:
        """Current session id without creating one"""
        return self._repo.get_session_id(self.instance_id)

    def adopt(self, server_id: str) -> None:
        """Replace the local id with one the backend established"""
        server_id = server_id.strip()
        if not server_id or server_id == self._repo.get_session_id(self.instance_id):
            return

        self._repo.save_session_id(self.instance_id, server_id)
        logger.info("Adopted backend session %s for %s", server_id, self.instance_id)

    def reset(self) -> None:
        """Forget the session id, starting a new conversation on next use"""
        previous = self._repo.get_session_id(self.instance_id)
        self._repo.delete_session_id(self.instance_id)
        logger.info("Reset session %s for %s", previous, self.instance_id)

        for listener in list(self._reset_listeners):
            listener(previous)

    def add_reset_listener(self, listener: ResetListener) -> None:
        self._reset_listeners.append(listener)

    def remove_reset_listener(self, listener: ResetListener) -> None:
        if listener in self._reset_listeners:
            self._reset_listeners.remove(listener)
