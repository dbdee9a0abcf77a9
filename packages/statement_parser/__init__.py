"""Public interface for the ``statement_parser`` package.

This module re-exports the orchestrator, the engine components and the public
models/types as the stable import surface. There is no runtime logic here,
and importing it creates no clients and opens no database connections.
"""

from .agent import AgentOutcome, AgentRequest, AgentState, CodeGenerationAgent
from .categorizer import BatchCategorizer
from .code_cache import CodeCache, generate_source_key
from .config import ParserSettings
from .config_generator import generate_parser_config
from .errors import (
    ConfigGenerationError,
    GenerationExhaustedError,
    InputError,
    PasswordRequiredError,
    StatementNotFoundError,
    StatementParserError,
)
from .extraction import extract_transactions, parse_amount, parse_date
from .extractors import DefaultExtractor, TextExtractor
from .llm import LanguageModel, OpenAIModel
from .models import (
    CategorizedTransaction,
    Column,
    ColumnStats,
    ExpectedSummary,
    ExtractedTotals,
    GeneratedCodeVersion,
    Holding,
    ParseResult,
    ParserConfig,
    RawTransaction,
    SheetData,
    SheetMetadata,
    SourceSummary,
    SpreadsheetResult,
    StatementInfo,
)
from .orchestrator import ParseOrchestrator
from .sandbox import Capabilities, SandboxExecutor, SandboxResult
from .summary import StatementInfoExtractor
from .type_inference import extract_metadata, infer_column
from .validation import ValidationResult, validate
from .work_queue import StatementQueue

__all__ = [
    # Orchestration
    "ParseOrchestrator",
    "StatementQueue",
    "ParserSettings",
    # Engine components
    "infer_column",
    "extract_metadata",
    "extract_transactions",
    "parse_amount",
    "parse_date",
    "generate_parser_config",
    "CodeCache",
    "generate_source_key",
    "CodeGenerationAgent",
    "AgentRequest",
    "AgentOutcome",
    "AgentState",
    "Capabilities",
    "SandboxExecutor",
    "SandboxResult",
    "validate",
    "ValidationResult",
    "BatchCategorizer",
    "StatementInfoExtractor",
    "TextExtractor",
    "DefaultExtractor",
    "LanguageModel",
    "OpenAIModel",
    # Models
    "ColumnStats",
    "Column",
    "SheetMetadata",
    "SheetData",
    "ParserConfig",
    "RawTransaction",
    "CategorizedTransaction",
    "Holding",
    "GeneratedCodeVersion",
    "SourceSummary",
    "ExpectedSummary",
    "ExtractedTotals",
    "StatementInfo",
    "ParseResult",
    "SpreadsheetResult",
    # Errors
    "StatementParserError",
    "InputError",
    "PasswordRequiredError",
    "StatementNotFoundError",
    "ConfigGenerationError",
    "GenerationExhaustedError",
]
