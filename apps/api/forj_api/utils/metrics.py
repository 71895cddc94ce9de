"""Prometheus metrics."""

from prometheus_client import Counter, Histogram

# Pipeline metrics
transitions = Counter(
    "forj_transitions_total",
    "Accepted forge state transitions",
    ["from_state", "to_state"],
)

transition_rejections = Counter(
    "forj_transition_rejections_total",
    "Rejected forge state transitions",
    ["reason"],
)

# Audit chain metrics
audit_appends = Counter(
    "forj_audit_appends_total",
    "Audit entries appended",
    ["action"],
)

audit_verifications = Counter(
    "forj_audit_verifications_total",
    "Audit chain verifications",
    ["result"],
)

audit_verification_duration = Histogram(
    "forj_audit_verification_duration_seconds",
    "Full-chain verification duration",
)

# Certificate metrics
certificate_events = Counter(
    "forj_certificates_total",
    "Certificate lifecycle events",
    ["event"],
)

# License metrics
license_usage = Counter(
    "forj_license_usage_total",
    "License usage attempts",
    ["outcome"],
)

# Expiry sweep metrics
expiry_sweeps = Counter(
    "forj_expiry_sweeps_total",
    "Records flipped to EXPIRED by the sweep",
    ["kind"],
)

# Authorization metrics
access_denials = Counter(
    "forj_access_denials_total",
    "Actions denied by the access policy",
    ["action"],
)
