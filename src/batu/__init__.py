"""
batu

바투 back end: Meta ad campaign automation for e-commerce sellers.

Responsibilities:
- Expose the FastAPI service (`batu.api`).
- Host the conversational agent with confirmation-gated mutations (`batu.agent`).
- Own billing, quota, audit and optimization-rule workflows (`batu.services`).
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
