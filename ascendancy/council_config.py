"""Loads the moderator/skeptic/visionary model bindings for debate mode."""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from .config import COLLECTIONS
from .models import CouncilBinding, DEFAULT_COUNCIL, Role
from .storage_db import DocumentStore

logger = logging.getLogger(__name__)

# Field name of each role's model id in a council_config document
ROLE_FIELDS = {
    Role.MODERATOR: "moderatorModel",
    Role.SKEPTIC: "skepticModel",
    Role.VISIONARY: "visionaryModel",
}


def binding_from_document(doc: Optional[Dict[str, Any]], defaults: CouncilBinding) -> CouncilBinding:
    """Fill each role from the document, falling back per role to `defaults`."""
    doc = doc or {}
    resolved = {}
    for role, field_name in ROLE_FIELDS.items():
        value = doc.get(field_name)
        if isinstance(value, str) and value.strip():
            resolved[role.value] = value.strip()
        else:
            resolved[role.value] = defaults.model_for(role)
    return CouncilBinding(**resolved)


def load_council(
    store: DocumentStore,
    user_id: Optional[str] = None,
    config_id: str = "default",
    defaults: CouncilBinding = DEFAULT_COUNCIL,
) -> CouncilBinding:
    """
    Resolve the council bindings for a request.

    A user's own config (stored under their user id) takes precedence over
    the shared `config_id` record. Never raises: a missing record or a store
    failure yields `defaults`.
    """
    candidates = [user_id, config_id] if user_id else [config_id]
    for candidate in candidates:
        try:
            docs = store.list_documents(COLLECTIONS["council_config"], {"configId": candidate}, limit=1)
        except SQLAlchemyError as e:
            logger.error(f"Error getting council config {candidate}: {e}")
            return defaults
        if docs:
            return binding_from_document(docs[0], defaults)

    logger.info(f"No council config found for {candidates}, using defaults")
    return defaults


def save_council(store: DocumentStore, binding: CouncilBinding, config_id: str = "default") -> Dict[str, Any]:
    """Store a new binding for `config_id`. The newest document wins on load."""
    return store.create_document(COLLECTIONS["council_config"], {
        "configId": config_id,
        "moderatorModel": binding.moderator,
        "skepticModel": binding.skeptic,
        "visionaryModel": binding.visionary,
    })
