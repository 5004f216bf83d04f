"""
Input validation for user prompts.

Rejects empty or oversized prompts and markup/script injection attempts
before any call is made to the generation service.
"""

import re

MAX_PROMPT_LENGTH = 500

_SUSPICIOUS_PATTERNS = [
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+=", re.IGNORECASE),
    re.compile(r"data:text/html", re.IGNORECASE),
    re.compile(r"<iframe", re.IGNORECASE),
    re.compile(r"<object", re.IGNORECASE),
    re.compile(r"<embed", re.IGNORECASE),
]


class PromptValidationError(ValueError):
    """Raised when a user prompt is rejected before generation."""


def validate_prompt(prompt: str) -> str:
    """
    Validate a user prompt and return it stripped of surrounding whitespace.

    Raises:
        PromptValidationError: If the prompt is empty, too long or looks like markup injection
    """
    if prompt is None or not prompt.strip():
        raise PromptValidationError("Prompt cannot be empty")

    if len(prompt) > MAX_PROMPT_LENGTH:
        raise PromptValidationError(f"Prompt must be less than {MAX_PROMPT_LENGTH} characters")

    for pattern in _SUSPICIOUS_PATTERNS:
        if pattern.search(prompt):
            raise PromptValidationError("Invalid characters detected")

    return prompt.strip()
