"""Game domain services for the trivia duel.

Routes and socket handlers call into ``presence`` (lobby and sessions) and
``progression`` (the state machine); those in turn use ``scoring``,
``questions``, ``guard``, ``scheduler`` and the ``repository`` storage
collaborator. Nothing in here knows about HTTP or Socket.IO.
"""
