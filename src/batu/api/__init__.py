"""
batu.api

HTTP surface of the 바투 service.

Responsibilities:
- FastAPI app factory and router modules.
- API-layer dependency wiring and request/response models.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Routers validate input, resolve the caller and delegate to `batu.services`.
