import tempfile
import unittest
from unittest import mock

from streetgender.caching import CacheStore
from streetgender.models import EntityVerdict, Gender
from streetgender.wiki import (
    EntityResolver,
    GenderClassifier,
    LinkEnricher,
    WikidataClient,
    gender_from_claims,
    get_links_languages,
)


def _claim(value_id):
    return {"mainsnak": {"snaktype": "value", "datavalue": {"type": "wikibase-entityid", "value": {"id": value_id}}}}


class StubClient:
    def __init__(self, claims=None, sitelinks=None, search=None):
        self.claims = claims or {}
        self.sitelinks = sitelinks or {}
        self.search = search
        self.claim_calls = 0

    def search_items(self, text, language, limit=7):
        return self.search

    def get_claims(self, entity_id, property_id):
        self.claim_calls += 1
        return self.claims.get(entity_id)

    def get_sitelinks(self, entity_id):
        return self.sitelinks.get(entity_id)


class GenderFromClaimsTests(unittest.TestCase):
    def test_female_and_trans_woman(self) -> None:
        self.assertIs(gender_from_claims([_claim("Q6581072")]), Gender.WOMAN)
        self.assertIs(gender_from_claims([_claim("Q1052281")]), Gender.WOMAN)

    def test_male_and_trans_man(self) -> None:
        self.assertIs(gender_from_claims([_claim("Q6581097")]), Gender.MAN)
        self.assertIs(gender_from_claims([_claim("Q2449503")]), Gender.MAN)

    def test_woman_takes_priority(self) -> None:
        self.assertIs(gender_from_claims([_claim("Q6581097"), _claim("Q6581072")]), Gender.WOMAN)

    def test_unknown_values(self) -> None:
        self.assertIs(gender_from_claims([]), Gender.UNKNOWN)
        self.assertIs(gender_from_claims([_claim("Q48270")]), Gender.UNKNOWN)
        somevalue = {"mainsnak": {"snaktype": "somevalue"}}
        self.assertIs(gender_from_claims([somevalue, "junk"]), Gender.UNKNOWN)


class GenderClassifierTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.cache = CacheStore.open(self._tmp.name)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_cached_entities_skip_the_network(self) -> None:
        self.cache.record_woman("Q7186", {})
        self.cache.record_man("Q42")
        client = StubClient()
        classifier = GenderClassifier(self.cache, client)
        self.assertEqual(classifier.classify("Q7186"), EntityVerdict(Gender.WOMAN, True))
        self.assertEqual(classifier.classify("Q42"), EntityVerdict(Gender.MAN, True))
        self.assertEqual(client.claim_calls, 0)

    def test_fresh_classification(self) -> None:
        client = StubClient(claims={"Q7186": [_claim("Q6581072")], "Q1": []})
        classifier = GenderClassifier(self.cache, client)
        verdict = classifier.classify("Q7186")
        self.assertIs(verdict.gender, Gender.WOMAN)
        self.assertFalse(verdict.from_cache)
        self.assertIs(classifier.classify("Q1").gender, Gender.UNKNOWN)

    def test_claims_failure_is_unknown(self) -> None:
        classifier = GenderClassifier(self.cache, StubClient())
        with self.assertLogs("streetgender.wiki", level="WARNING"):
            verdict = classifier.classify("Q404")
        self.assertIs(verdict.gender, Gender.UNKNOWN)
        self.assertFalse(verdict.from_cache)


class ResolverAndEnricherTests(unittest.TestCase):
    def test_resolver_absorbs_failures(self) -> None:
        with self.assertLogs("streetgender.wiki", level="WARNING"):
            self.assertEqual(EntityResolver(StubClient(search=None), "es").resolve("Marie Curie"), [])
        self.assertEqual(EntityResolver(StubClient(search=["Q7186"]), "es").resolve("Marie Curie"), ["Q7186"])
        self.assertEqual(EntityResolver(StubClient(search=["Q1"]), "es").resolve("   "), [])

    def test_enricher_keeps_only_available_languages(self) -> None:
        sitelinks = {
            "Q7186": {
                "eswiki": {"site": "eswiki", "title": "Marie Curie", "url": "https://es.wikipedia.org/wiki/Marie_Curie"},
                "frwiki": {"site": "frwiki", "title": "Marie Curie", "url": "https://fr.wikipedia.org/wiki/Marie_Curie"},
            }
        }
        links = LinkEnricher(StubClient(sitelinks=sitelinks)).fetch("Q7186", ["es", "en"])
        self.assertEqual(links, {"es": {"label": "Marie Curie", "link": "https://es.wikipedia.org/wiki/Marie_Curie"}})

    def test_enricher_failure_is_empty(self) -> None:
        with self.assertLogs("streetgender.wiki", level="WARNING"):
            self.assertEqual(LinkEnricher(StubClient()).fetch("Q7186", ["en"]), {})

    def test_enrichment_twice_merges_in_cache(self) -> None:
        sitelinks = {
            "Q7186": {
                "eswiki": {"title": "Marie Curie", "url": "https://es.wikipedia.org/wiki/Marie_Curie"},
                "enwiki": {"title": "Marie Curie", "url": "https://en.wikipedia.org/wiki/Marie_Curie"},
                "itwiki": {"title": "Marie Curie", "url": "https://it.wikipedia.org/wiki/Marie_Curie"},
            }
        }
        enricher = LinkEnricher(StubClient(sitelinks=sitelinks))
        with tempfile.TemporaryDirectory() as tmp:
            cache = CacheStore.open(tmp)
            cache.record_woman("Q7186", enricher.fetch("Q7186", ["es", "en"]))
            cache.record_woman("Q7186", enricher.fetch("Q7186", ["it", "en"]))
            self.assertEqual(sorted(cache.lookup_woman("Q7186")), ["en", "es", "it"])

    def test_links_languages(self) -> None:
        self.assertEqual(get_links_languages("es"), ["es", "en"])
        self.assertEqual(get_links_languages("en"), ["en"])
        self.assertEqual(get_links_languages("tlh"), ["en"])


class WikidataClientTests(unittest.TestCase):
    def test_search_parses_ids(self) -> None:
        payload = {"search": [{"id": "Q7186"}, {"id": "L123"}, {"id": "Q37463"}]}
        with mock.patch("streetgender.wiki.get_json", return_value=payload) as get_json:
            ids = WikidataClient().search_items("Marie Curie", "es")
        self.assertEqual(ids, ["Q7186", "Q37463"])
        params = get_json.call_args.args[0]
        self.assertEqual(params["action"], "wbsearchentities")
        self.assertEqual(params["language"], "es")

    def test_claims_for_property(self) -> None:
        payload = {"claims": {"P21": [_claim("Q6581072")]}}
        with mock.patch("streetgender.wiki.get_json", return_value=payload):
            claims = WikidataClient().get_claims("Q7186", "P21")
        self.assertEqual(claims, [_claim("Q6581072")])

    def test_api_error_counts_as_failure(self) -> None:
        client = WikidataClient()
        with mock.patch("streetgender.wiki.get_json", return_value={"error": {"code": "no-such-entity"}}):
            with self.assertLogs("streetgender.wiki", level="WARNING"):
                self.assertIsNone(client.get_claims("Q0", "P21"))
        with mock.patch("streetgender.wiki.get_json", return_value=None):
            self.assertIsNone(client.search_items("x", "en"))
        self.assertEqual(client.stats["claims_errors"], 1)
        self.assertEqual(client.stats["search_errors"], 1)

    def test_sitelinks(self) -> None:
        payload = {"entities": {"Q7186": {"sitelinks": {"enwiki": {"title": "Marie Curie", "url": "u"}}}}}
        with mock.patch("streetgender.wiki.get_json", return_value=payload):
            self.assertEqual(WikidataClient().get_sitelinks("Q7186"), {"enwiki": {"title": "Marie Curie", "url": "u"}})
        with mock.patch("streetgender.wiki.get_json", return_value={"entities": {"Q0": {"missing": ""}}}):
            self.assertIsNone(WikidataClient().get_sitelinks("Q0"))


if __name__ == "__main__":
    unittest.main()
