from tvtracker.models.user import User, Password, Account, PasswordReset, Invite
from tvtracker.models.show import Show, ShowOnUser
from tvtracker.models.episode import Episode, EpisodeOnUser
from tvtracker.models.passkey import Passkey

__all__ = [
    "User",
    "Password",
    "Account",
    "PasswordReset",
    "Invite",
    "Show",
    "ShowOnUser",
    "Episode",
    "EpisodeOnUser",
    "Passkey"
]
