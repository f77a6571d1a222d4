"""Request context management for observability.

Context variables for request tracking across async boundaries.
The access-control layer sets tenant_id/user_id once the caller's profile
has been resolved so every later log line carries them.
"""

from contextvars import ContextVar

# Request ID - unique per HTTP request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Tenant ID - tenant the current request is scoped to
tenant_id_var: ContextVar[str] = ContextVar("tenant_id", default="")

# User ID - identity id of the authenticated caller
user_id_var: ContextVar[str] = ContextVar("user_id", default="")
