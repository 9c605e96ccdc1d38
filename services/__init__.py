# Services Module for the Collaboration Platform
# Contains the flow engine and the ledger, escrow and messaging services it drives

from services.notification_service import NotificationService, NotificationType, PushNotifier
from services.errors import CollaborationError, ErrorKind

__all__ = [
    'CollaborationError',
    'ErrorKind',
    'NotificationService',
    'NotificationType',
    'PushNotifier',
]
