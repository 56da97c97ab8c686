"""
Composite identifiers.

    source-id = ``{provider_name}-{provider_account_id}``
    layer-id  = ``{source_id}:{provider_layer_id}``
    event-id  = ``{layer_id}:{provider_event_id}``
"""

from __future__ import annotations

from typing import List, Optional, Tuple

ID_DELIMITER = ":"
SOURCE_ID_DELIMITER = "-"


def merge_ids(*parts) -> str:
    return ID_DELIMITER.join(str(part) for part in parts)


def split_merged_id(merged_id: str) -> List[str]:
    return merged_id.split(ID_DELIMITER)


def get_source_id(provider_name: str, provider_user_id) -> str:
    return f"{provider_name}{SOURCE_ID_DELIMITER}{provider_user_id}"


def split_source_id(source_id: str) -> Optional[Tuple[str, str]]:
    """
    Return ``(provider_name, provider_user_id)`` or ``None`` when
    ``source_id`` is not a valid source id.

    Only the first ``-`` separates the two parts: provider account ids may
    contain dashes themselves.
    """
    provider_name, sep, provider_user_id = source_id.partition(SOURCE_ID_DELIMITER)
    if not sep or not provider_name or not provider_user_id:
        return None
    return provider_name, provider_user_id


def provider_of(source_id: str) -> Optional[str]:
    parts = split_source_id(source_id)
    return parts[0] if parts else None
