from __future__ import annotations

import json
import logging
from typing import Any, Dict, List

from .fields import FieldType

logger = logging.getLogger(__name__)


class Hydrator:
    """Python-side reshaping of flat result rows.

    Rows come back from the driver as plain mappings. Columns holding JSON
    text (OBJECT fields, embedded relation snapshots and embedded sub-query
    columns) are parsed into Python structures; anything that fails to parse
    is kept as the raw string.
    """

    def __init__(self, registry, adapter):
        self.registry = registry
        self.adapter = adapter

    def parse_json(self, raw: Any, embedded: bool = False) -> Any:
        if not isinstance(raw, str):
            return raw
        text = self.adapter.decode_embedded(raw) if embedded else raw
        try:
            return json.loads(text)
        except (TypeError, ValueError):
            logger.debug("keeping unparseable JSON value as text: %r", raw[:80])
            return raw

    def normalize_row(self, model: str, row: Dict[str, Any]) -> Dict[str, Any]:
        schema = self.registry.get_schema(model)
        out: Dict[str, Any] = {}
        for key, value in row.items():
            fdef = schema.get_field(key)
            if value is None:
                out[key] = value
            elif fdef is None:
                # embedded sub-query columns carry the quote marker (or plain JSON)
                if isinstance(value, str) and (self.adapter.quote_marker in value or value.startswith('{')):
                    out[key] = self.parse_json(value, embedded=True)
                else:
                    out[key] = value
            elif fdef.type is FieldType.OBJECT:
                out[key] = self.parse_json(value)
            elif fdef.is_relation and isinstance(value, str):
                out[key] = self.parse_json(value, embedded=True)
            else:
                out[key] = value
        return out

    def normalize(self, model: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [self.normalize_row(model, r) for r in rows]
