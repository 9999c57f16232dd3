import json
import logging
from pathlib import Path

import jsonschema

from . import config
from .models import Gender, StreetDecision
from .utils import read_json, write_json_atomic

logger = logging.getLogger(__name__)

LINK_ENTRY_SCHEMA = {
    "type": "object",
    "required": ["label", "link"],
    "properties": {
        "label": {"type": "string"},
        "link": {"type": "string"},
    },
}
WOMEN_SCHEMA = {
    "type": "object",
    "additionalProperties": {"type": "object", "additionalProperties": LINK_ENTRY_SCHEMA},
}
MEN_SCHEMA = {"type": "array", "items": {"type": "string"}}
STREETS_SCHEMA = {
    "type": "object",
    "additionalProperties": {
        "type": "object",
        "required": ["gender"],
        "properties": {
            "gender": {"enum": [g.value for g in Gender]},
            "wikidataId": {"type": "string"},
        },
    },
}


class CacheStore:
    """Women, men and street-decision tables persisted as three JSON snapshots.

    Nothing is written implicitly: callers invoke :meth:`flush` to persist.
    """

    def __init__(self, cache_dir=config.CACHE_DIR):
        self.cache_dir = Path(cache_dir)
        self.women_path = self.cache_dir / config.WOMEN_CACHE_FILE
        self.men_path = self.cache_dir / config.MEN_CACHE_FILE
        self.streets_path = self.cache_dir / config.STREETS_CACHE_FILE
        self.women = {}
        self.men = []
        self._men_index = set()
        self.streets = {}
        self._dirty = False
        self.flushes = 0

    @classmethod
    def open(cls, cache_dir=config.CACHE_DIR):
        store = cls(cache_dir)
        store.load()
        return store

    def _load_table(self, path, schema, empty):
        if not path.exists():
            return empty
        try:
            data = read_json(path)
            jsonschema.validate(data, schema)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("[!] Could not read cache %s (%s). Starting from an empty table.", path, exc)
            return empty
        except jsonschema.ValidationError as exc:
            logger.warning("[!] Cache %s is malformed (%s). Starting from an empty table.", path, exc.message)
            return empty
        return data

    def load(self):
        """Read the three tables; absent or unreadable files yield empty tables."""
        self.women = self._load_table(self.women_path, WOMEN_SCHEMA, {})
        self.men = []
        self._men_index = set()
        for entity_id in self._load_table(self.men_path, MEN_SCHEMA, []):
            self._append_man(entity_id)
        self.streets = {
            name: StreetDecision.from_json(entry)
            for name, entry in self._load_table(self.streets_path, STREETS_SCHEMA, {}).items()
        }
        self._dirty = False
        logger.info(
            "[*] Cache loaded: %s women, %s men, %s street decisions.",
            len(self.women),
            len(self.men),
            len(self.streets),
        )
        return self

    def lookup_street(self, name):
        return self.streets.get(name)

    def lookup_woman(self, entity_id):
        return self.women.get(entity_id)

    def is_known_man(self, entity_id):
        return entity_id in self._men_index

    def _append_man(self, entity_id):
        if entity_id in self._men_index:
            return False
        self._men_index.add(entity_id)
        self.men.append(entity_id)
        return True

    def record_woman(self, entity_id, partial_links=None):
        """Merge per-language link entries into the woman's record, creating it if absent."""
        if entity_id not in self.women:
            self.women[entity_id] = {}
            self._dirty = True
        record = self.women[entity_id]
        for lang, entry in (partial_links or {}).items():
            if record.get(lang) != entry:
                record[lang] = dict(entry)
                self._dirty = True
        return record

    def record_man(self, entity_id):
        if self._append_man(entity_id):
            self._dirty = True

    def record_street_decision(self, name, gender, wikidata_id=None):
        decision = StreetDecision(Gender(gender), wikidata_id or None)
        if self.streets.get(name) != decision:
            self.streets[name] = decision
            self._dirty = True
        return decision

    def links_for(self, decision):
        """Return the cached links for a street decision (empty for men and unknown ids)."""
        if decision.gender is not Gender.WOMAN or not decision.wikidata_id:
            return {}
        return self.women.get(decision.wikidata_id) or {}

    def flush(self, force=False):
        """Write the three tables, each through a temp file and rename."""
        if not self._dirty and not force:
            return False
        write_json_atomic(self.women_path, {key: self.women[key] for key in sorted(self.women)})
        write_json_atomic(self.men_path, list(self.men))
        write_json_atomic(
            self.streets_path,
            {name: self.streets[name].to_json() for name in sorted(self.streets)},
        )
        self._dirty = False
        self.flushes += 1
        return True

    @property
    def dirty(self):
        return self._dirty
