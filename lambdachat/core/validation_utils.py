"""
Validation utilities shared by the signaling and chat layers.
"""

from typing import Dict, Any, List, Optional


class ValidationUtils:
    """Common validation utilities."""

    @staticmethod
    def validate_required_fields(data: Dict[str, Any], required_fields: List[str]) -> Optional[str]:
        """Validate that all required fields are present in the data."""
        missing_fields = [field for field in required_fields if field not in data or data[field] is None]
        if missing_fields:
            return f"Missing required fields: {', '.join(missing_fields)}"
        return None

    @staticmethod
    def validate_peer_id(value: Any, field: str) -> Optional[str]:
        """Validate that a value is usable as a peer id."""
        # bool is an int subclass; JSON true/false is never a peer id
        if isinstance(value, bool) or not isinstance(value, int):
            return f"{field} must be an integer, got {type(value).__name__}"
        return None

    @staticmethod
    def validate_session_description(description: Any, expected_type: str) -> Optional[str]:
        """Validate an SDP description of the form {type, sdp}."""
        if not isinstance(description, dict):
            return f"{expected_type} must be an object"
        error = ValidationUtils.validate_required_fields(description, ['type', 'sdp'])
        if error:
            return error
        if description['type'] != expected_type:
            return f"Invalid description type: expected {expected_type}, received {description['type']}"
        if not isinstance(description['sdp'], str) or not description['sdp']:
            return f"Invalid SDP in {expected_type}"
        return None
