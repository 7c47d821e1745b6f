"""Product alias resolution and user/project key normalization."""
from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from .errors import StoreError
from .logging_utils import log_warning
from .models import PRODUCT_ALIASES_TABLE
from .store import UsageStore


logger = logging.getLogger(__name__)

UNKNOWN_KEY = "unknown"


def load_aliases(store: UsageStore) -> Dict[str, str]:
    """Read the whole alias table once and key it by trimmed, lower-cased alias.

    A failed read is logged and yields an empty map, so every product falls
    through to its normalized name.
    """
    try:
        records = store.select_rows(PRODUCT_ALIASES_TABLE)
    except StoreError as exc:
        log_warning(logger, f"Failed to load product aliases: {exc}")
        return {}

    alias_map: Dict[str, str] = {}
    for record in records:
        alias = record.get("alias")
        product_key = record.get("product_key")
        if not isinstance(alias, str) or not alias.strip() or not product_key:
            continue
        alias_map[alias.strip().lower()] = str(product_key)
    logger.info("Loaded %d product aliases into memory", len(alias_map))
    return alias_map


def resolve_product_key(product_name: Any, alias_map: Mapping[str, str]) -> str:
    """Map a free-text product name to its canonical key.

    Unknown names are never rejected: the trimmed, lower-cased name itself
    becomes the key.
    """
    if not product_name or not isinstance(product_name, str):
        return UNKNOWN_KEY
    normalized = product_name.strip().lower()
    return alias_map.get(normalized, normalized)


def normalize_user_key(user_identifier: Any) -> str:
    if not user_identifier or not isinstance(user_identifier, str):
        return UNKNOWN_KEY
    return user_identifier.strip().lower()


def normalize_project_key(project: Any) -> Optional[str]:
    if not project or not isinstance(project, str):
        return None
    return project.strip() or None
