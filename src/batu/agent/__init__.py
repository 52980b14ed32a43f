"""
batu.agent

Conversational agent package (LangGraph turn loop + tool registry).

Responsibilities:
- Typed turn state, nodes, routing, and graph compilation.
- Tool definitions split into read-only queries and confirmation-gated mutations.
- The LLM boundary (OpenAI chat completions with tool calling).
"""

# Package marker.


# --- Module Notes -----------------------------------------------------------
# Call sites should go through `batu.services.conversational_agent`, which owns
# persistence for a turn.
