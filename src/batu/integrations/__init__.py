"""
batu.integrations

HTTP client boundaries for external systems.

Responsibilities:
- Meta Marketing API (campaign reads/writes, insights).
- Meta Conversions API (hashed, batched server events).
- Toss Payments (billing keys and recurring charges).
"""

# Package marker.
