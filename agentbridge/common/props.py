"""Post property keys read or written by the bridge."""

REFERENCED_THREAD = "referenced_thread"
PROMPT_TYPE = "prompt_type"
RESPONDING_TO = "responding_to"
PENDING_TOOL_CALLS = "pending_tool_calls"
# Tool calls that were resolved, replayed to the model on later turns.
RESOLVED_TOOL_CALLS = "resolved_tool_calls"
TOOL_CALL_DEPTH = "tool_call_depth"
LLM_REQUESTER_USER_ID = "llm_requester_user_id"
NO_REGEN = "no_regen"

FROM_PLUGIN = "from_plugin"
FROM_WEBHOOK = "from_webhook"
FROM_BOT = "from_bot"
ACTIVATE_AI = "activate_ai"
WRANGLER = "wrangler"
