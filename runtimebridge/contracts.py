"""Versioned bridge contract identifiers for notification/status/error schemas."""

STATUS_SCHEMA_V1 = "bridge_status.v1"
ERROR_SCHEMA_V1 = "error.v1"
AUTH_STORE_VERSION = 1

NOTIFICATION_EVENT = "event"
NOTIFICATION_STATUS = "status"
NOTIFICATION_ERROR = "error"

NOTIFICATION_KINDS = {
    NOTIFICATION_EVENT,
    NOTIFICATION_STATUS,
    NOTIFICATION_ERROR,
}
