import logging

from . import config
from .models import EntityVerdict, Gender
from .utils import get_json, is_qid

logger = logging.getLogger(__name__)


def get_links_languages(city_lang):
    """Languages to fetch links for: the dataset language, then the fallback."""
    langs = []
    if city_lang in config.SUPPORTED_LANGUAGES:
        langs.append(city_lang)
    if config.FALLBACK_LANGUAGE not in langs:
        langs.append(config.FALLBACK_LANGUAGE)
    return langs


def claim_value_ids(claims):
    """Yield the item ids carried by wikibase-entityid claim values."""
    for claim in claims or []:
        if not isinstance(claim, dict):
            continue
        datavalue = (claim.get("mainsnak") or {}).get("datavalue") or {}
        if datavalue.get("type") != "wikibase-entityid":
            continue
        value = datavalue.get("value")
        if isinstance(value, dict) and value.get("id"):
            yield value["id"]


def gender_from_claims(claims, woman_ids=config.WOMAN_CLASSIFIERS, man_ids=config.MAN_CLASSIFIERS):
    """Woman if any value is a woman classifier, else Man if any is a man classifier."""
    values = set(claim_value_ids(claims))
    if values & set(woman_ids):
        return Gender.WOMAN
    if values & set(man_ids):
        return Gender.MAN
    return Gender.UNKNOWN


class WikidataClient:
    """Thin client over the Wikibase action API; failures come back as None."""

    def __init__(self, endpoint=config.API_ENDPOINT, session=None):
        self.endpoint = endpoint
        self.session = session
        self.stats = {
            "search_calls": 0,
            "search_errors": 0,
            "claims_calls": 0,
            "claims_errors": 0,
            "sitelinks_calls": 0,
            "sitelinks_errors": 0,
        }

    def _call(self, kind, params):
        self.stats[f"{kind}_calls"] += 1
        data = get_json(params, endpoint=self.endpoint, session=self.session)
        if not isinstance(data, dict) or "error" in data:
            self.stats[f"{kind}_errors"] += 1
            if isinstance(data, dict):
                logger.warning("    [!] Wikidata API error for %s: %s", params.get("action"), data["error"])
            return None
        return data

    def search_items(self, text, language, limit=config.SEARCH_LIMIT):
        """Return the ordered item ids matching a free-text label search."""
        data = self._call(
            "search",
            {
                "action": "wbsearchentities",
                "search": text,
                "language": language,
                "uselang": language,
                "type": "item",
                "limit": limit,
            },
        )
        if data is None or not isinstance(data.get("search"), list):
            return None
        return [hit.get("id") for hit in data["search"] if isinstance(hit, dict) and is_qid(hit.get("id"))]

    def get_claims(self, entity_id, property_id):
        data = self._call(
            "claims",
            {
                "action": "wbgetclaims",
                "entity": entity_id,
                "property": property_id,
                "formatversion": 2,
            },
        )
        if data is None or not isinstance(data.get("claims"), dict):
            return None
        claims = data["claims"].get(property_id, [])
        return claims if isinstance(claims, list) else None

    def get_sitelinks(self, entity_id):
        data = self._call(
            "sitelinks",
            {
                "action": "wbgetentities",
                "ids": entity_id,
                "props": "sitelinks/urls",
            },
        )
        if data is None:
            return None
        entity = (data.get("entities") or {}).get(entity_id)
        if not isinstance(entity, dict) or "missing" in entity:
            return None
        sitelinks = entity.get("sitelinks") or {}
        return sitelinks if isinstance(sitelinks, dict) else None


class EntityResolver:
    """Cleaned person name -> ordered candidate ids; errors degrade to no candidates."""

    def __init__(self, client, language):
        self.client = client
        self.language = language

    def resolve(self, name):
        if not name or not name.strip():
            return []
        ids = self.client.search_items(name.strip(), self.language)
        if ids is None:
            logger.warning("    [!] Lookup failed for %r. Treating as no candidates.", name)
            return []
        return ids


class GenderClassifier:
    """Entity id -> gender verdict from the sex-or-gender claim, short-circuited by the cache."""

    def __init__(
        self,
        cache,
        client,
        woman_ids=config.WOMAN_CLASSIFIERS,
        man_ids=config.MAN_CLASSIFIERS,
        property_id=config.SEX_OR_GENDER_PROPERTY,
    ):
        self.cache = cache
        self.client = client
        self.woman_ids = frozenset(woman_ids)
        self.man_ids = frozenset(man_ids)
        self.property_id = property_id

    def classify(self, entity_id):
        if self.cache.lookup_woman(entity_id) is not None:
            return EntityVerdict(Gender.WOMAN, True)
        if self.cache.is_known_man(entity_id):
            return EntityVerdict(Gender.MAN, True)
        claims = self.client.get_claims(entity_id, self.property_id)
        if claims is None:
            logger.warning("    [!] Could not read claims for %s.", entity_id)
            return EntityVerdict(Gender.UNKNOWN, False)
        return EntityVerdict(gender_from_claims(claims, self.woman_ids, self.man_ids), False)


class LinkEnricher:
    """Fetch {lang: {label, link}} from the entity's Wikipedia sitelinks."""

    def __init__(self, client):
        self.client = client

    def fetch(self, entity_id, languages):
        sitelinks = self.client.get_sitelinks(entity_id)
        if sitelinks is None:
            logger.warning("    [!] Could not read sitelinks for %s.", entity_id)
            return {}
        links = {}
        for lang in languages:
            entry = sitelinks.get(f"{lang}wiki")
            if isinstance(entry, dict) and entry.get("title") and entry.get("url"):
                links[lang] = {"label": entry["title"], "link": entry["url"]}
        return links
