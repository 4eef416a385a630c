from typing import Any, Dict, Optional

# Config fields that are never logged in clear text
SECRET_FIELDS = {'api_token', 'user_key', 'token', 'password'}


def mask_secret(value: Optional[str]) -> str:
    """
    Mask a credential for safe logging.

    Keeps the last 4 characters of long values, e.g. "****abcd".
    """
    if not value:
        return ""
    if len(value) <= 8:
        return "****"
    return f"****{value[-4:]}"


def masked_config(data: Any) -> Any:
    """
    Return a copy of a config dump with secret fields masked.

    Args:
        data: Output of AppConfig.model_dump() or any nested part of it

    Returns:
        Same structure with SECRET_FIELDS replaced by mask_secret()
    """
    if isinstance(data, dict):
        result: Dict[str, Any] = {}
        for key, value in data.items():
            if key in SECRET_FIELDS and (value is None or isinstance(value, str)):
                result[key] = mask_secret(value)
            else:
                result[key] = masked_config(value)
        return result
    if isinstance(data, list):
        return [masked_config(item) for item in data]
    return data
