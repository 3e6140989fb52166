"""
Standardized error handling utilities for EcoHunt API endpoints.
Provides consistent error formats, HTTP status codes, and error codes across all endpoints.
"""

import logging
from flask import jsonify
from typing import Dict, Any, Optional

# Standard error codes for consistent API responses
ERROR_CODES = {
    # Authentication errors (400-499)
    "TOKEN_MISSING": "Authentication token is missing",
    "TOKEN_INVALID": "Authentication token is invalid or expired",
    "AUTH_REQUIRED": "Sign in to continue",
    "NOT_FOUND": "Resource not found",

    # Validation errors (400-499)
    "INVALID_REQUEST": "Invalid request body or parameters",
    "VALIDATION_ERROR": "Request validation failed",
    "INVALID_IMAGE": "The uploaded photo could not be read",
    "SEVERITY_REQUIRED": "Severity is required when photo analysis is unavailable",

    # Resource errors (400-499)
    "NOT_FOUND_OR_UNAUTHORIZED": "Resource not found or access denied",
    "NOT_REPORTER": "Only the reporter can edit this area",
    "NOT_GROUP_MEMBER": "You are not a member of this group",
    "ADMIN_REQUIRED": "Only group admins can do this",

    # Workflow and business logic errors (400-499)
    "AREA_UNAVAILABLE": "This area is not available for cleanup",
    "AREA_CONFLICT": "The area was changed by someone else",
    "TRANSITION_BLOCKED": "This action is not available right now",
    "WORKFLOW_CLOSED": "This claim has already finished or was cancelled",
    "INVALID_COLLABORATOR": "That user cannot be added as a collaborator",
    "LAST_ADMIN": "A group must keep at least one admin",
    "ALREADY_MEMBER": "You are already a member of this group",
    "INVALID_INVITE_CODE": "Invalid invite code",
    "RATE_LIMITED": "Too many requests",

    # System errors (500-599)
    "SERVER_ERROR": "Internal server error",
    "TASK_QUEUE_ERROR": "Error queuing background task",
    "DATABASE_ERROR": "Database operation failed",
    "CACHE_ERROR": "Cache operation failed",
    "EXTERNAL_SERVICE_ERROR": "External service unavailable",
}

def create_error_response(
    error_code: str,
    message: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    status_code: int = 500
) -> tuple:
    """
    Create a standardized error response with consistent format.

    Args:
        error_code: One of the standard ERROR_CODES keys
        message: Optional custom message (defaults to standard message)
        details: Optional additional error details
        status_code: HTTP status code

    Returns:
        Tuple of (JSON response, HTTP status code)
    """
    if error_code not in ERROR_CODES:
        logging.warning(f"Unknown error code used: {error_code}")
        error_code = "SERVER_ERROR"

    error_message = message or ERROR_CODES[error_code]

    response_data = {
        "error_code": error_code,
        "message": error_message
    }

    if details:
        response_data["details"] = details

    if status_code >= 500:
        logging.error(f"API Error [{error_code}]: {error_message} - Status: {status_code}")
    else:
        logging.info(f"API Error [{error_code}]: {error_message} - Status: {status_code}")

    return jsonify(response_data), status_code

def handle_exception(e: Exception, context: str = "API endpoint") -> tuple:
    """
    Handle unexpected exceptions with standardized error response.

    Args:
        e: The exception that occurred
        context: Context information for logging

    Returns:
        Tuple of (JSON response, HTTP status code)
    """
    error_type = type(e).__name__
    error_message = str(e)

    logging.error(f"Unexpected error in {context}: {error_type} - {error_message}", exc_info=True)

    return create_error_response(
        error_code="SERVER_ERROR",
        message="An unexpected error occurred",
        details={"error_type": error_type},
        status_code=500
    )

# Common error response shortcuts
def auth_required_error(message: Optional[str] = None) -> tuple:
    return create_error_response("AUTH_REQUIRED", message, status_code=401)

def forbidden_error(error_code: str, message: Optional[str] = None) -> tuple:
    return create_error_response(error_code, message, status_code=403)

def not_found_error(message: Optional[str] = None) -> tuple:
    return create_error_response("NOT_FOUND", message, status_code=404)

def conflict_error(error_code: str, message: Optional[str] = None) -> tuple:
    return create_error_response(error_code, message, status_code=409)

def validation_error(message: Optional[str] = None, details: Optional[Dict] = None) -> tuple:
    return create_error_response("VALIDATION_ERROR", message, details, status_code=400)

def server_error(message: Optional[str] = None) -> tuple:
    return create_error_response("SERVER_ERROR", message, status_code=500)
