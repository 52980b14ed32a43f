"""
batu.api.routers

One module per public resource (agent, actions, campaigns, billing, ...).
"""
