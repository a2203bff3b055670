"""
qbolink — QuickBooks Online OAuth2 credentials and webhooks.

Keeps tenant tokens fresh ahead of expiry and routes signed change
notifications to subscribers.
"""

__version__ = "0.1.0"
__all__ = ["QBOLinkConfig", "QuickBooksConnector"]

from qbolink.config import QBOLinkConfig  # noqa: E402
from qbolink.connector import QuickBooksConnector  # noqa: E402
