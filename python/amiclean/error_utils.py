"""
Error message utilities for providing actionable guidance to users.

This module provides functions to create helpful error messages with
suggested fixes for AWS credential, EC2 API and configuration failures.
"""

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(Enum):
    """Categories of errors for better error handling"""
    AUTHENTICATION = "authentication"
    CONFIGURATION = "configuration"
    PERMISSION = "permission"
    RESOURCE = "resource"
    THROTTLING = "throttling"
    UNKNOWN = "unknown"


class ActionableError(Exception):
    """Exception with actionable guidance for users"""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize actionable error

        Args:
            message: Primary error message
            category: Error category for classification
            suggestions: List of suggested fixes
            details: Additional context information
        """
        self.message = message
        self.category = category
        self.suggestions = suggestions or []
        self.details = details or {}
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message with suggestions"""
        lines = [f"❌ {self.message}"]

        if self.suggestions:
            lines.append("\n💡 Suggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        if self.details:
            lines.append("\n📋 Additional details:")
            for key, value in self.details.items():
                lines.append(f"   {key}: {value}")

        return "\n".join(lines)


def get_error_code(error: Exception) -> str:
    """Return the AWS error code of a botocore ClientError, or '' for anything else"""
    response = getattr(error, "response", None)
    if not isinstance(response, dict):
        return ""
    return response.get("Error", {}).get("Code", "") or ""


def create_aws_credentials_error(profile: Optional[str], region: Optional[str], error: Exception) -> ActionableError:
    """Create actionable error for missing or invalid AWS credentials"""
    error_str = str(error).lower()

    suggestions = [
        "Configure AWS credentials: aws configure",
        "Or set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY environment variables",
        "In CI, verify the job role or OIDC provider grants credentials",
    ]

    if profile:
        suggestions.insert(0, f"Verify the profile '{profile}' exists in ~/.aws/config or ~/.aws/credentials")

    if "expired" in error_str:
        suggestions.insert(0, "Refresh the session token (e.g. aws sso login)")

    return ActionableError(
        message="Unable to obtain AWS credentials",
        category=ErrorCategory.AUTHENTICATION,
        suggestions=suggestions,
        details={
            "profile": profile or "(default)",
            "region": region or "(default)",
            "error_type": type(error).__name__,
            "error_message": str(error)
        }
    )


def create_ec2_error(operation: str, error: Exception, resource_id: Optional[str] = None) -> ActionableError:
    """Create actionable error for EC2 API failures

    Args:
        operation: EC2 API operation name (e.g. "DeregisterImage")
        error: Original exception (usually botocore ClientError)
        resource_id: AMI or snapshot ID the operation was acting on
    """
    code = get_error_code(error)

    suggestions = [
        "Verify the AWS region is the one the images live in",
        "Check the IAM policy attached to the caller",
    ]
    category = ErrorCategory.RESOURCE

    if code in ("UnauthorizedOperation", "AccessDenied", "AuthFailure"):
        category = ErrorCategory.PERMISSION
        suggestions.insert(0, f"Grant ec2:{operation} to the caller's IAM role or user")
    elif code.startswith("InvalidAMIID"):
        suggestions.insert(0, "The image may already have been deregistered by another run")
    elif code.startswith("InvalidSnapshot"):
        suggestions.insert(0, "The snapshot may still be referenced by another AMI or already deleted")
    elif code in ("RequestLimitExceeded", "Throttling"):
        category = ErrorCategory.THROTTLING
        suggestions.insert(0, "Wait and re-run; EC2 API requests are being throttled")

    details = {
        "operation": operation,
        "error_code": code or "n/a",
        "error_type": type(error).__name__,
        "error_message": str(error)
    }
    if resource_id:
        details["resource_id"] = resource_id

    target = f" for {resource_id}" if resource_id else ""
    return ActionableError(
        message=f"EC2 operation failed: {operation}{target}",
        category=category,
        suggestions=suggestions,
        details=details
    )


def create_config_error(field: str, value: Any, reason: str) -> ActionableError:
    """Create actionable error for configuration validation failures"""
    suggestions = [
        f"Check the '{field}' value in config.yaml",
        "Verify the value matches the expected format",
        "Check the config-example.yaml for correct format",
    ]

    if "days" in field.lower():
        suggestions.insert(1, "Retention days must be a non-negative integer")
    elif "region" in field.lower():
        suggestions.insert(1, "Region should look like us-east-1")
    elif "tag" in field.lower():
        suggestions.insert(1, "Provide both a tag key and a tag value")

    return ActionableError(
        message=f"Configuration error: Invalid value for '{field}'",
        category=ErrorCategory.CONFIGURATION,
        suggestions=suggestions,
        details={
            "field": field,
            "value": value,
            "reason": reason
        }
    )
