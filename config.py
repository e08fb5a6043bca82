"""
Configuration module for the Change Ticket Analyzer.
Loads environment variables and defines constants and lookup tables for the application.
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# ============================================================================
# LLM PROVIDER CONFIGURATION
# ============================================================================

# Default model provider for semantic comparison ("gemini" or "azure")
DEFAULT_MODEL_PROVIDER = os.getenv("MODEL_PROVIDER", "gemini")

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-flash-latest")

AZURE_OPENAI_ENDPOINT = os.getenv("AZURE_OPENAI_ENDPOINT")
AZURE_OPENAI_API_KEY = os.getenv("AZURE_OPENAI_API_KEY")
AZURE_OPENAI_DEPLOYMENT_NAME = os.getenv("AZURE_OPENAI_DEPLOYMENT_NAME")
AZURE_OPENAI_API_VERSION = os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-01")

# Credentials are validated when a provider client is created (llm_provider.py),
# so importing this module never fails for callers that only classify tickets
# or detect conflicts.

# Generation parameters for similarity comparison
LLM_TEMPERATURE = 0.3
LLM_MAX_TOKENS = 500

# ============================================================================
# ARIZE AX CONFIGURATION (Observability)
# ============================================================================

ARIZE_SPACE_ID = os.getenv("ARIZE_SPACE_ID")
ARIZE_API_KEY = os.getenv("ARIZE_API_KEY")
ARIZE_PROJECT_NAME = os.getenv("ARIZE_PROJECT_NAME", "change-ticket-analysis")

# ============================================================================
# RATE LIMITING CONFIGURATION
# ============================================================================

# Maximum concurrent LLM comparison calls
LLM_MAX_CONCURRENT = int(os.getenv("LLM_MAX_CONCURRENT", "1"))

# Seconds to wait after each LLM call (0 disables the delay)
LLM_REQUEST_DELAY = float(os.getenv("LLM_REQUEST_DELAY", "0"))

# Retry configuration
MAX_RETRIES = 1              # One retry attempt
RETRY_DELAY_SECONDS = 2      # Delay between retries

# ============================================================================
# SIMILARITY ANALYSIS CONFIGURATION
# ============================================================================

# Pairwise scores at or above this value pull both tickets into a group
SIMILARITY_THRESHOLD = float(os.getenv("SIMILARITY_THRESHOLD", "0.7"))

# Heuristic scores used when no semantic comparison is needed
DIFFERENT_CATEGORY_SCORE = 0.2
DIFFERENT_CATEGORY_CONFIDENCE = 0.5
DIFFERENT_OBJECT_SCORE = 0.3
DIFFERENT_OBJECT_CONFIDENCE = 0.6

# Defaults for replies that lack SCORE / CONFIDENCE / REASONING markers
DEFAULT_SIMILARITY_SCORE = 0.5
DEFAULT_SIMILARITY_CONFIDENCE = 0.5
DEFAULT_SIMILARITY_REASONING = "No reasoning provided"

# Substituted when the semantic comparer fails
FALLBACK_SIMILARITY_SCORE = 0.5
FALLBACK_SIMILARITY_CONFIDENCE = 0.4
FALLBACK_SIMILARITY_REASONING = "Fallback similarity calculation"

# ============================================================================
# CACHE CONFIGURATION
# ============================================================================

SIMILARITY_CACHE_TTL_SECONDS = int(os.getenv("SIMILARITY_CACHE_TTL_SECONDS", "3600"))
CACHE_MAX_ENTRIES = int(os.getenv("CACHE_MAX_ENTRIES", "100"))
CACHE_PREFIX = "batch_similarity"

# When set, similarity results are shared through Redis instead of process memory
REDIS_URL = os.getenv("REDIS_URL")

# ============================================================================
# LLM PROMPT TEMPLATES
# ============================================================================

LLM_SYSTEM_PROMPT = """You are an expert Salesforce administrator analyzing ticket similarity for batch processing.
Focus on identifying tickets that can be efficiently processed together based on:
1. Target Salesforce object (Account, Contact, Opportunity, etc.)
2. Type of change (field creation, validation rule, flow, etc.)
3. Complexity and scope of changes
4. Potential conflicts or dependencies

Provide accurate similarity scores to enable efficient batch processing."""

SIMILARITY_PROMPT_TEMPLATE = """Analyze the similarity between these two Salesforce configuration tickets for batch processing.
Both tickets involve {category} changes.

Ticket 1:
- Summary: {summary_a}
- Description: {description_a}

Ticket 2:
- Summary: {summary_b}
- Description: {description_b}

Evaluate the following:
1. Are they targeting the same Salesforce object?
2. Are the changes similar in nature (e.g., both adding fields, both updating validation rules)?
3. Could they be efficiently processed together in a batch?
4. Are there any conflicts or dependencies between them?

Provide a similarity score from 0.0 to 1.0 and explain your reasoning.
Format: SCORE: [number] | CONFIDENCE: [number] | REASONING: [explanation]"""

# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

LOG_DIR = os.getenv("LOG_DIR", "logs")
LOG_LEVEL_CONSOLE = "INFO"
LOG_LEVEL_FILE = "DEBUG"
LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# ============================================================================
# CONFLICT DETECTION CONFIGURATION
# ============================================================================

# Field base names that collide with platform objects, field types or query keywords
RESERVED_FIELD_WORDS = [
    "account", "case", "contact", "lead", "opportunity",
    "product", "user", "task", "event", "note",
    "id", "name", "type", "status", "date",
    "currency", "percent", "formula", "master", "detail",
    "limit", "offset", "order", "by", "where",
    "select", "from", "and", "or", "not",
]

# Standard fields that can be referenced from a formula body
FORMULA_STANDARD_FIELDS = [
    "Id", "Name", "CreatedDate", "CreatedById",
    "LastModifiedDate", "LastModifiedById", "OwnerId", "RecordTypeId",
]

# Risk score assigned to collaborator-reported findings, by severity
SEVERITY_RISK_SCORES = {
    "critical": 90,
    "high": 70,
    "medium": 40,
    "low": 20,
}
UNRECOGNIZED_SEVERITY_RISK_SCORE = 10

CIRCULAR_REFERENCE_RISK_SCORE = 90
RESERVED_WORD_RISK_SCORE = 75
NAMING_CONVENTION_RISK_SCORE = 20
SIMILAR_NAME_RISK_SCORE = 40

# Names whose normalized edit-distance similarity falls strictly between
# these bounds are reported as near-duplicates
SIMILAR_NAME_LOWER_BOUND = 0.7
SIMILAR_NAME_UPPER_BOUND = 1.0

# Resolution text per conflict kind; {component} is the proposed component name
RESOLUTION_TEMPLATES = {
    "duplicate": 'Choose a different name for "{component}" or modify the existing component',
    "dependency": 'Ensure all referenced components exist before creating "{component}"',
    "validation": "Review and modify validation logic to avoid conflicts",
    "naming": 'Rename "{component}" to follow naming conventions',
}
DEFAULT_RESOLUTION = "Review and resolve the conflict before proceeding"

SUGGESTED_ACTIONS = {
    "duplicate": [
        "Use a more specific name for {component}",
        "Check if the existing field can be reused",
        "Add a prefix or suffix to differentiate",
    ],
    "dependency": [
        "Create required dependencies first",
        "Update formula to reference existing fields",
        "Consider using a different field type",
    ],
    "validation": [
        "Combine validation rules if they serve the same purpose",
        "Adjust validation conditions to avoid overlap",
        "Use custom error messages to differentiate",
    ],
}
DEFAULT_SUGGESTED_ACTIONS = ["Review the conflict and take appropriate action"]

# Naming convention used when the org does not publish one
DEFAULT_NAMING_CONVENTION = {
    "pattern": "PascalCase__c",
    "suggestions": [
        "Use PascalCase for field names (e.g., CustomerEmail__c)",
        "Include descriptive context in the name",
        "Avoid abbreviations when possible",
    ],
}

# Base-name regex for each known convention; unknown conventions accept any name
NAMING_CONVENTION_PATTERNS = {
    "PascalCase__c": r"^[A-Z][a-zA-Z0-9]*$",
    "snake_case__c": r"^[a-z]+(_[a-z]+)*$",
}

CUSTOM_SUFFIX = "__c"
