"""Data Masker — reversible tokenization of sensitive values for LLM pipelines."""

from .masker import DataMasker, new_session_id
from .patterns import Rule, Dictionary, default_rules
from .tokens import TokenGenerator
from .vault import SessionVault
from .middleware import MaskingMiddleware
from .streaming import StreamingUnmasker
from .tools import ToolDefinition, create_masking_tools, invoke_tool
from .config import MaskingConfig, CategoryPolicy, create_masker, create_middleware, load_config, load_from_yaml
from .errors import MaskingError, MaskingConfigError, TokenCollisionError, TokenExhaustedError
from .types import MappingEntry, MaskedText, UnmaskedText, SessionStats

__all__ = [
    "DataMasker", "new_session_id",
    "Rule", "Dictionary", "default_rules",
    "TokenGenerator", "SessionVault",
    "MaskingMiddleware", "StreamingUnmasker",
    "ToolDefinition", "create_masking_tools", "invoke_tool",
    "MaskingConfig", "CategoryPolicy",
    "create_masker", "create_middleware", "load_config", "load_from_yaml",
    "MaskingError", "MaskingConfigError", "TokenCollisionError", "TokenExhaustedError",
    "MappingEntry", "MaskedText", "UnmaskedText", "SessionStats",
]
__version__ = "0.1.0"
