"""
Input validation for MCP tool arguments.

Checks language codes and document ids before a reconciliation is
started, so malformed requests never reach the repository.
"""

import re

# BCP 47-ish: "fa", "en", "pt-BR", "zh-Hant", "es-419"
_LANGUAGE_CODE = re.compile(r"^[a-z]{2,3}(?:-[A-Za-z0-9]{2,8})*$")


def format_validation_error(field_name: str, reason: str) -> str:
    """Generate consistent error message for validation failures."""
    return f"{field_name} {reason}"


def validate_language_code(code: object) -> tuple[bool, str]:
    """
    Validate a language code.

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.
    """
    if not isinstance(code, str) or not code.strip():
        return (
            False,
            format_validation_error("Language code", "cannot be empty"),
        )
    if not _LANGUAGE_CODE.match(code):
        return (
            False,
            format_validation_error(
                "Language code",
                f"'{code}' is not a valid code (expected e.g. 'en' or 'pt-BR')",
            ),
        )
    return (True, "")


def validate_document_id(document_id: object) -> tuple[bool, str]:
    """
    Validate a repository document id.

    Positive integers and non-empty strings without whitespace are
    accepted; booleans are not.
    """
    if isinstance(document_id, bool):
        return (
            False,
            format_validation_error("Document id", "must not be a boolean"),
        )
    if isinstance(document_id, int):
        if document_id <= 0:
            return (
                False,
                format_validation_error("Document id", "must be positive"),
            )
        return (True, "")
    if isinstance(document_id, str):
        if not document_id.strip():
            return (
                False,
                format_validation_error("Document id", "cannot be empty"),
            )
        if any(ch.isspace() for ch in document_id):
            return (
                False,
                format_validation_error(
                    "Document id", "cannot contain whitespace"
                ),
            )
        return (True, "")
    return (
        False,
        format_validation_error(
            "Document id", "must be an integer or a string"
        ),
    )


def normalize_document_id(document_id: int | str) -> int | str:
    """Turn numeric strings into ints so ``"318"`` and ``318`` share a link."""
    if isinstance(document_id, str) and document_id.isdigit():
        return int(document_id)
    return document_id
