"""TimeTrac: start/stop time tracking behind revocable bearer tokens.

The pieces, leaf to root:

* ``core.security`` signs and verifies JWTs (``TokenService``).
* ``crud.auth_tokens`` is the token registry that remembers revocations.
* ``crud.time_entries`` is the session ledger and its start/stop state machine.
* ``deps.auth`` turns an ``Authorization: Bearer`` header into a user.
* ``routers`` expose all of the above over HTTP; ``main`` wires the app.
"""

__version__ = "1.0.0"
