# Importing every model registers it on ``Base.metadata`` and lets the
# relationships between them resolve.
from .auth_token import AuthToken
from .time_entry import TimeEntry
from .user import User

__all__ = ["AuthToken", "TimeEntry", "User"]
