"""
Utility functions for the Change Ticket Analyzer.
Includes logging, HTML stripping, retry logic, string similarity and fingerprinting.

The analyzer modules only log through child loggers of "change_analyzer"
(e.g. "change_analyzer.conflict_detector") and never attach handlers
themselves. The host application calls setup_logger() once at startup to
route all of them to the console and the dated log file under LOG_DIR.
"""

import os
import json
import hashlib
import logging
from datetime import datetime
from functools import wraps
from typing import Any, Dict, Optional
from bs4 import BeautifulSoup
import time
import asyncio

import config


# ============================================================================
# CUSTOM EXCEPTIONS
# ============================================================================

class LLMAPIError(Exception):
    """Raised when an LLM provider call fails or returns nothing usable."""
    pass


class MetadataLookupError(Exception):
    """Raised by metadata lookup implementations when an org describe fails."""
    pass


class ImpactAnalysisError(Exception):
    """Raised by impact analysis implementations when a comparison fails."""
    pass


# ============================================================================
# LOGGING SETUP
# ============================================================================

def setup_logger(name: str = "change_analyzer") -> logging.Logger:
    """
    Set up structured logging with both console and file handlers.

    Called once by the host application. With the default name every
    analyzer module's "change_analyzer.*" logger propagates here.

    Args:
        name: Logger name

    Returns:
        Configured logger instance
    """
    # Create logs directory if it doesn't exist
    if not os.path.exists(config.LOG_DIR):
        os.makedirs(config.LOG_DIR)

    log_filename = f"analyzer_{datetime.now().strftime('%Y%m%d')}.log"
    log_filepath = os.path.join(config.LOG_DIR, log_filename)

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    formatter = logging.Formatter(
        config.LOG_FORMAT,
        datefmt=config.LOG_DATE_FORMAT
    )

    # Console handler (INFO level)
    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, config.LOG_LEVEL_CONSOLE))
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # File handler (DEBUG level)
    file_handler = logging.FileHandler(log_filepath)
    file_handler.setLevel(getattr(logging, config.LOG_LEVEL_FILE))
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    return logger


# ============================================================================
# HTML STRIPPING
# ============================================================================

def strip_html(text: Optional[str]) -> str:
    """
    Strip HTML from ticket text, returning clean plain text.

    Tracker descriptions often arrive as rendered HTML; classification and
    prompts only need the words.

    Args:
        text: Raw text that may contain HTML

    Returns:
        Clean plain text with blank lines removed
    """
    if not text:
        return ""

    try:
        soup = BeautifulSoup(text, 'html.parser')

        # Remove script and style elements
        for script in soup(["script", "style"]):
            script.decompose()

        text = soup.get_text()

        # Clean up excessive whitespace
        lines = text.split('\n')
        lines = [line.strip() for line in lines]
        lines = [line for line in lines if line]

        return '\n'.join(lines)
    except Exception as e:
        logger = logging.getLogger("change_analyzer")
        logger.warning(f"Failed to strip HTML from text: {e}")
        return text  # Return original if stripping fails


def compose_ticket_text(ticket: Dict) -> str:
    """
    Join a ticket's summary and description into the text that gets classified.

    Args:
        ticket: Ticket dictionary with "summary" and "description" keys

    Returns:
        Plain text "summary description"
    """
    summary = strip_html(ticket.get('summary') or '')
    description = strip_html(ticket.get('description') or '')
    return f"{summary} {description}".strip()


# ============================================================================
# RETRY LOGIC
# ============================================================================

def retry_on_failure(max_retries: int = config.MAX_RETRIES,
                    delay: float = config.RETRY_DELAY_SECONDS):
    """
    Decorator to retry a function on failure with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        delay: Initial delay between retries in seconds

    Returns:
        Decorator function
    """
    def decorator(func):
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            logger = logging.getLogger("change_analyzer")
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    last_exception = e
                    if attempt < max_retries:
                        wait_time = delay * (2 ** attempt)  # Exponential backoff
                        logger.warning(
                            f"{func.__name__} failed (attempt {attempt + 1}/{max_retries + 1}): {e}. "
                            f"Retrying in {wait_time}s..."
                        )
                        await asyncio.sleep(wait_time)
                    else:
                        logger.error(
                            f"{func.__name__} failed after {max_retries + 1} attempts: {e}"
                        )

            raise last_exception

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            logger = logging.getLogger("change_analyzer")
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    last_exception = e
                    if attempt < max_retries:
                        wait_time = delay * (2 ** attempt)  # Exponential backoff
                        logger.warning(
                            f"{func.__name__} failed (attempt {attempt + 1}/{max_retries + 1}): {e}. "
                            f"Retrying in {wait_time}s..."
                        )
                        time.sleep(wait_time)
                    else:
                        logger.error(
                            f"{func.__name__} failed after {max_retries + 1} attempts: {e}"
                        )

            raise last_exception

        # Return appropriate wrapper based on whether function is async
        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        else:
            return sync_wrapper

    return decorator


# ============================================================================
# CACHE FINGERPRINTS
# ============================================================================

def generate_fingerprint(prefix: str, params: Dict[str, Any]) -> str:
    """
    Build a stable cache key from a parameter dictionary.

    Keys are sorted before hashing so that the same parameters always map to
    the same fingerprint regardless of insertion order.

    Example:
        >>> generate_fingerprint("batch_similarity", {"a": 1})[:17]
        'batch_similarity:'
    """
    content = json.dumps(params, sort_keys=True, default=str)
    digest = hashlib.sha256(content.encode('utf-8')).hexdigest()
    return f"{prefix}:{digest}"


# ============================================================================
# NAME NORMALIZATION AND STRING SIMILARITY
# ============================================================================

def strip_custom_suffix(name: Optional[str]) -> str:
    """Return a component API name without its trailing custom suffix (__c)."""
    if not name:
        return ""
    if name.lower().endswith(config.CUSTOM_SUFFIX):
        return name[:-len(config.CUSTOM_SUFFIX)]
    return name


def levenshtein_distance(first: str, second: str) -> int:
    """
    Compute the edit distance between two strings.

    Example:
        >>> levenshtein_distance("kitten", "sitting")
        3
    """
    if len(first) < len(second):
        first, second = second, first

    previous_row = list(range(len(second) + 1))
    for i, char_a in enumerate(first, 1):
        current_row = [i]
        for j, char_b in enumerate(second, 1):
            if char_a == char_b:
                current_row.append(previous_row[j - 1])
            else:
                current_row.append(min(
                    previous_row[j - 1] + 1,  # substitution
                    current_row[j - 1] + 1,   # insertion
                    previous_row[j] + 1       # deletion
                ))
        previous_row = current_row

    return previous_row[-1]


def string_similarity(first: str, second: str) -> float:
    """
    Normalized similarity: (len(longer) - edit_distance) / len(longer).

    Two empty strings are identical (1.0).

    Example:
        >>> string_similarity("phone", "phone")
        1.0
        >>> string_similarity("abcd", "abce")
        0.75
    """
    longer, shorter = (first, second) if len(first) > len(second) else (second, first)

    if len(longer) == 0:
        return 1.0

    edit_distance = levenshtein_distance(longer, shorter)
    return (len(longer) - edit_distance) / len(longer)
