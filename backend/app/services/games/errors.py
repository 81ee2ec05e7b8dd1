"""Typed outcomes for rejected game operations.

Every error carries a ``kind`` and an HTTP status so the transport layer can
render it without knowing anything about storage or game rules.
"""
from typing import Any, Dict, Optional


class GameError(Exception):
    """Base class for all rejected game operations."""

    kind = 'error'
    status_code = 400
    default_message = 'Request rejected'

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context: Dict[str, Any] = context
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        payload = {'error': self.message, 'kind': self.kind}
        payload.update(self.context)
        return payload


class ValidationError(GameError):
    kind = 'validation'
    default_message = 'Invalid request'


class NotFound(GameError):
    kind = 'not_found'
    status_code = 404
    default_message = 'Not found'


class GameNotFound(NotFound):
    default_message = 'Game not found'


class InvalidSession(GameError):
    kind = 'invalid_session'
    status_code = 403
    default_message = 'Invalid session'


class NotCreator(GameError):
    kind = 'not_creator'
    status_code = 403
    default_message = 'Only the game creator may start the game'


class Conflict(GameError):
    kind = 'conflict'
    status_code = 409
    default_message = 'Conflicting request'


class GameFull(Conflict):
    kind = 'game_full'
    default_message = 'Game is full'


class AlreadyStarted(Conflict):
    kind = 'already_started'
    default_message = 'Game already started'


class NotEnoughPlayers(Conflict):
    kind = 'not_enough_players'
    default_message = 'Need 2 players to start'


class AlreadyAnswered(Conflict):
    kind = 'already_answered'
    default_message = 'Already answered'


class DeadlinePassed(Conflict):
    kind = 'deadline_passed'
    default_message = "Time's up!"


class NotAcceptingAnswers(Conflict):
    kind = 'not_accepting_answers'
    default_message = 'Not accepting answers at this time'


class NotInLobby(Conflict):
    kind = 'not_in_lobby'
    default_message = 'Game is not in the lobby'


class StorageUnavailable(GameError):
    kind = 'storage_unavailable'
    status_code = 503
    default_message = 'Storage is temporarily unavailable, please try again'
