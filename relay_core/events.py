"""
Canonical event names for relay-core.
Stable surface for hooks and observability.
"""

# Agent lifecycle
AGENT_INITIALIZED = "agent:initialized"
AGENT_TERMINATED = "agent:terminated"

# Agentic loop
LOOP_START = "loop:start"
LOOP_ITERATION = "loop:iteration"
LOOP_END = "loop:end"

# Model calls
MODEL_REQUEST = "model:request"
MODEL_RESPONSE = "model:response"
MODEL_ERROR = "model:error"

# Tool invocations
TOOL_PRE = "tool:pre"
TOOL_POST = "tool:post"
TOOL_ERROR = "tool:error"

# Report submission (reportOut)
REPORT_SUBMITTED = "report:submitted"

# Delegation lifecycle
DELEGATION_START = "delegation:start"
DELEGATION_COMPLETE = "delegation:complete"
DELEGATION_ERROR = "delegation:error"
DELEGATION_TIMEOUT = "delegation:timeout"

# All canonical events (for iteration and validation)
ALL_EVENTS = [
    AGENT_INITIALIZED,
    AGENT_TERMINATED,
    LOOP_START,
    LOOP_ITERATION,
    LOOP_END,
    MODEL_REQUEST,
    MODEL_RESPONSE,
    MODEL_ERROR,
    TOOL_PRE,
    TOOL_POST,
    TOOL_ERROR,
    REPORT_SUBMITTED,
    DELEGATION_START,
    DELEGATION_COMPLETE,
    DELEGATION_ERROR,
    DELEGATION_TIMEOUT,
]
