"""
Relay Core - delegation and agentic-loop execution for cooperating agents.
"""

__version__ = "1.0.0"

from .cancellation import CancellationState
from .cancellation import CancellationToken
from .config import DEFAULT_CONFIGURATION
from .config import DEFAULT_COORDINATOR
from .config import FileConfigurationProvider
from .config import StaticConfigurationProvider
from .config import load_configuration
from .config import parse_configuration
from .config import resolve_entry_agent
from .config import validate_configuration
from .conversation import ConversationLog
from .delegation import DelegationEngine
from .delegation import DelegationRecord
from .errors import AgentExecutionError
from .errors import CircularDelegationError
from .errors import ConfigurationError
from .errors import DelegationError
from .errors import DelegationTimeoutError
from .errors import RelayError
from .errors import ToolAccessError
from .hooks import HookRegistry
from .interfaces import ConfigurationProvider
from .interfaces import ModelInvoker
from .interfaces import PromptBuilder
from .interfaces import ToolExecutor
from .interfaces import ToolFilter
from .ledger import ToolInvocationLedger
from .loop import AgenticLoop
from .loop import LoopMode
from .loop_state import LoopState
from .loop_state import LoopStatus
from .models import DELEGATE_WORK_TOOL
from .models import REPORT_OUT_TOOL
from .models import AgentProfile
from .models import ConversationEntry
from .models import DelegationTarget
from .models import HookResult
from .models import LoopResult
from .models import ModelResponse
from .models import Permissions
from .models import RelayConfiguration
from .models import ToolCall
from .models import ToolDescriptor
from .models import ToolInvocation
from .prompt_builder import SystemPromptBuilder
from .registry import ContextStatus
from .registry import ConversationInfo
from .registry import ExecutionContext
from .registry import ExecutionContextRegistry
from .store import RelayStore
from .tool_filter import PermissionToolFilter
from .tools import DelegateWorkTool
from .tools import ToolDispatcher

__all__ = [
    # Orchestration core
    "AgenticLoop",
    "LoopMode",
    "LoopState",
    "LoopStatus",
    "DelegationEngine",
    "DelegationRecord",
    "ContextStatus",
    "ConversationInfo",
    "ExecutionContext",
    "ExecutionContextRegistry",
    "RelayStore",
    "ConversationLog",
    "ToolInvocationLedger",
    # Cancellation primitives
    "CancellationState",
    "CancellationToken",
    "HookRegistry",
    "HookResult",
    # Models
    "AgentProfile",
    "ConversationEntry",
    "DelegationTarget",
    "LoopResult",
    "ModelResponse",
    "Permissions",
    "RelayConfiguration",
    "ToolCall",
    "ToolDescriptor",
    "ToolInvocation",
    "DELEGATE_WORK_TOOL",
    "REPORT_OUT_TOOL",
    # Collaborator contracts
    "ConfigurationProvider",
    "ModelInvoker",
    "PromptBuilder",
    "ToolExecutor",
    "ToolFilter",
    # Reference collaborators
    "DelegateWorkTool",
    "FileConfigurationProvider",
    "PermissionToolFilter",
    "StaticConfigurationProvider",
    "SystemPromptBuilder",
    "ToolDispatcher",
    # Configuration
    "DEFAULT_CONFIGURATION",
    "DEFAULT_COORDINATOR",
    "load_configuration",
    "parse_configuration",
    "resolve_entry_agent",
    "validate_configuration",
    # Errors
    "RelayError",
    "ConfigurationError",
    "DelegationError",
    "CircularDelegationError",
    "DelegationTimeoutError",
    "ToolAccessError",
    "AgentExecutionError",
]
