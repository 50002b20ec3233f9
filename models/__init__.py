from models.notification import Notification
from models.proposal import Proposal, StatusChange

__all__ = [
    "Notification",
    "Proposal",
    "StatusChange",
]
