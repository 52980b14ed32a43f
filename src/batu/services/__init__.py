"""
batu.services

Service-layer package.

Responsibilities:
- Own transaction boundaries and persistence decisions.
- Orchestrate calls across DB, agent graph, and external API clients.
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Services are plain Python classes built per request; tests drive them with an
# in-memory SQLite session and fake clients.
