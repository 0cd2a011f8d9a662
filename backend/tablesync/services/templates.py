"""Saved sync templates: which remote table a task writes to."""
from typing import Any, Dict, List, Optional

from loguru import logger
from pydantic import ValidationError

from tablesync.core.config import settings
from tablesync.models.task import SyncTarget
from tablesync.services.kv_store import KeyValueStore


class TemplateStore:
    def __init__(self, store: KeyValueStore, storage_key: Optional[str] = None):
        self.store = store
        self.storage_key = storage_key or settings.templates_storage_key

    def list_templates(self) -> List[Dict[str, Any]]:
        try:
            templates = self.store.get_json(self.storage_key, [])
        except ValueError as e:
            logger.error("Stored templates are not valid JSON: {}", e)
            return []
        return templates if isinstance(templates, list) else []

    def save_template(self, template: Dict[str, Any]) -> None:
        """Insert or replace a template by its ``id``."""
        if not template.get("id"):
            raise ValueError("template requires an id")
        templates = [t for t in self.list_templates() if t.get("id") != template["id"]]
        templates.append(template)
        self.store.set_json(self.storage_key, templates)

    def get_remote_sync_target(self, template_id: str) -> Optional[SyncTarget]:
        template = next((t for t in self.list_templates() if t.get("id") == template_id), None)
        if template is None:
            return None
        try:
            return SyncTarget.model_validate(template)
        except ValidationError as e:
            logger.warning("Template {} has no usable sync target: {}", template_id, e)
            return None
