"""Centralized application constants — single source of truth for hardcoded values."""

# --- Session ---
SESSION_COOKIE_NAME = "sb-access-token"

# --- PayPal API paths ---
PAYPAL_TOKEN_PATH = "/v1/oauth2/token"
PAYPAL_SUBSCRIPTION_PATH = "/v1/billing/subscriptions/{subscription_id}"
PAYPAL_CANCEL_PATH = "/v1/billing/subscriptions/{subscription_id}/cancel"
PAYPAL_ACTIVATE_PATH = "/v1/billing/subscriptions/{subscription_id}/activate"
PAYPAL_VERIFY_WEBHOOK_PATH = "/v1/notifications/verify-webhook-signature"
PAYPAL_CERT_URL_PREFIXES = (
    "https://api.paypal.com/",
    "https://api-m.paypal.com/",
    "https://api.sandbox.paypal.com/",
    "https://api-m.sandbox.paypal.com/",
)
PAYPAL_WEBHOOK_HEADERS = (
    "paypal-transmission-id",
    "paypal-transmission-time",
    "paypal-transmission-sig",
    "paypal-cert-url",
    "paypal-auth-algo",
)
# Provider states in which a client-reported subscription may be activated
PAYPAL_ACTIVATABLE_STATES = {"APPROVED", "ACTIVE"}

# --- Billing reasons ---
DEFAULT_CANCEL_REASON = "User requested cancellation"
ACTIVATION_ROLLBACK_REASON = "Database error during activation - rollback"
CANCELLATION_ROLLBACK_REASON = "Database error - rollback cancellation"
# Client-facing stand-in for a procedure error; the full error only goes to the log
DATABASE_FAILURE_DETAIL = "Database error"

# --- Subscription statuses ---
SUBSCRIPTION_ACTIVE = "active"
SUBSCRIPTION_CANCELLED = "cancelled"
SUBSCRIPTION_SUSPENDED = "suspended"
SUBSCRIPTION_EXPIRED = "expired"

# --- Webhook event -> internal status ---
WEBHOOK_STATUS_EVENTS = {
    "BILLING.SUBSCRIPTION.ACTIVATED": SUBSCRIPTION_ACTIVE,
    "BILLING.SUBSCRIPTION.CANCELLED": SUBSCRIPTION_CANCELLED,
    "BILLING.SUBSCRIPTION.SUSPENDED": SUBSCRIPTION_SUSPENDED,
    "BILLING.SUBSCRIPTION.EXPIRED": SUBSCRIPTION_EXPIRED,
}
PAYMENT_COMPLETED_EVENT = "PAYMENT.SALE.COMPLETED"

# --- Plans ---
PLAN_LIMITS = {
    "starter": {"max_clients": 10},
    "professional": {"max_clients": 30},
    "master": {"max_clients": 999},
}
DEFAULT_PLANS = [
    {"name": "starter", "price": "19.00", "interval": "month"},
    {"name": "professional", "price": "39.00", "interval": "month"},
    {"name": "master", "price": "79.00", "interval": "month"},
]

# --- HTTP Client ---
HTTP_TOTAL_TIMEOUT = 30  # seconds
HTTP_CONNECT_TIMEOUT = 10  # seconds
HTTP_MAX_CONNECTIONS = 20
HTTP_MAX_KEEPALIVE_CONNECTIONS = 10

# --- Pagination ---
PAGE_SIZE = 50
