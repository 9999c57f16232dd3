"""
apply_wikipedia.py - classify a city's street names through Wikidata.

Reads:
  - data/<city>/list.csv          (streetName;cleanName)
  - cache/*.json                  (women, men, street decisions)

Writes:
  - data/<city>/list_wiki.csv     (identified: streetName;gender;wikiJSON)
  - data/<city>/list_unsure.csv   (unsure: streetName;cleanName)
  - data/<city>/apply_wikipedia_summary.json
  - cache/*.json                  (flushed every few new decisions and at the end)
"""

import argparse
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from tqdm import tqdm

from . import config
from .caching import CacheStore
from .models import ConfigurationError, Gender, NameVerdict
from .utils import count_csv_records, csv_writer, dump_links, iter_csv_records, write_json_atomic
from .wiki import EntityResolver, GenderClassifier, LinkEnricher, WikidataClient, get_links_languages

logger = logging.getLogger(__name__)

SOURCE_CACHE = "cache"
SOURCE_FALLBACK = "fallback"
SOURCE_FRESH = "fresh"


@dataclass
class StreetOutcome:
    gender: Gender
    links: dict = field(default_factory=dict)
    wikidata_id: Optional[str] = None
    source: str = SOURCE_FRESH

    @property
    def cache_hit(self):
        return self.source != SOURCE_FRESH


def classify_name(name, resolver, classifier):
    """
    First candidate classified as Woman wins immediately; otherwise the last
    candidate classified as Man; otherwise Unknown.
    """
    candidates = resolver.resolve(name)
    if not candidates:
        logger.debug("    [-] No Wikidata candidates for %r", name)
        return NameVerdict(Gender.UNKNOWN, None, 0)

    male_entry = None
    male_from_cache = False
    for entity_id in candidates:
        verdict = classifier.classify(entity_id)
        if verdict.gender is Gender.WOMAN:
            return NameVerdict(Gender.WOMAN, entity_id, len(candidates), verdict.from_cache)
        if verdict.gender is Gender.MAN:
            male_entry = entity_id
            male_from_cache = verdict.from_cache

    if male_entry is not None:
        return NameVerdict(Gender.MAN, male_entry, len(candidates), male_from_cache)
    return NameVerdict(Gender.UNKNOWN, None, len(candidates))


def identified_row(street_name, gender, links):
    return [street_name, gender.value, dump_links(links or {}) if gender is Gender.WOMAN else ""]


class StreetClassifier:
    """Per-record state machine: cache check, resolve, classify, enrich, cache write."""

    def __init__(
        self,
        cache,
        resolver,
        classifier,
        enricher,
        languages,
        *,
        quick=False,
        flush_every=config.CACHE_FLUSH_EVERY,
    ):
        self.cache = cache
        self.resolver = resolver
        self.classifier = classifier
        self.enricher = enricher
        self.languages = list(languages)
        self.quick = quick
        self.flush_every = max(1, flush_every)
        self.summary = {
            "processed": 0,
            "cache_hits": 0,
            "fallbacks": 0,
            "newly_confirmed": 0,
            "identified": 0,
            "unsure": 0,
            "women": 0,
            "men": 0,
            "flushes": 0,
        }

    def _cached_outcome(self, decision, source):
        return StreetOutcome(decision.gender, self.cache.links_for(decision), decision.wikidata_id, source)

    def _missing_links(self, entity_id):
        """Fetch sitelinks only for the languages the cached record lacks."""
        known = self.cache.lookup_woman(entity_id) or {}
        missing = [lang for lang in self.languages if lang not in known]
        if not missing:
            return {}
        return self.enricher.fetch(entity_id, missing)

    def process_record(self, street_name, clean_name):
        cached = self.cache.lookup_street(street_name)
        if self.quick and cached is not None:
            return self._cached_outcome(cached, SOURCE_CACHE)

        verdict = classify_name(clean_name, self.resolver, self.classifier)
        if verdict.gender is Gender.UNKNOWN and cached is not None:
            # Keep the earlier verdict instead of regressing to Unknown.
            return self._cached_outcome(cached, SOURCE_FALLBACK)

        links = {}
        if verdict.gender is Gender.WOMAN:
            links = dict(self.cache.record_woman(verdict.wikidata_id, self._missing_links(verdict.wikidata_id)))
        elif verdict.gender is Gender.MAN:
            self.cache.record_man(verdict.wikidata_id)
        self.cache.record_street_decision(street_name, verdict.gender, verdict.wikidata_id)
        return StreetOutcome(verdict.gender, links, verdict.wikidata_id, SOURCE_FRESH)

    def _checkpoint(self):
        if self.cache.flush():
            self.summary["flushes"] += 1

    def run(self, records, identified_writer, unsure_writer, total=None):
        """Stream records one at a time into the identified/unsure writers."""
        progress = tqdm(total=total, desc="Classifying streets", unit="street")
        try:
            for row in records:
                street_name = row[0]
                clean_name = row[1] if len(row) > 1 and row[1].strip() else street_name
                outcome = self.process_record(street_name, clean_name)
                self.summary["processed"] += 1

                if outcome.source == SOURCE_FRESH:
                    self.summary["newly_confirmed"] += 1
                    if self.summary["newly_confirmed"] % self.flush_every == 0:
                        self._checkpoint()
                else:
                    self.summary["cache_hits"] += 1
                    if outcome.source == SOURCE_FALLBACK:
                        self.summary["fallbacks"] += 1

                if outcome.gender.identified:
                    identified_writer.writerow(identified_row(street_name, outcome.gender, outcome.links))
                    self.summary["identified"] += 1
                    self.summary["women" if outcome.gender is Gender.WOMAN else "men"] += 1
                else:
                    unsure_writer.writerow([street_name, clean_name])
                    self.summary["unsure"] += 1

                logger.debug("    [*] %s -> %s (%s)", street_name, outcome.gender.value, outcome.source)
                progress.set_postfix(cache_hits=self.summary["cache_hits"])
                progress.update(1)
        finally:
            progress.close()
            self._checkpoint()
        return self.summary


def build_classifier(cache, language, *, quick=False, client=None):
    """Wire the resolver, classifier and enricher around one Wikidata client."""
    client = client or WikidataClient()
    return StreetClassifier(
        cache,
        EntityResolver(client, language),
        GenderClassifier(cache, client),
        LinkEnricher(client),
        get_links_languages(language),
        quick=quick,
    )


def process_city(city, language, *, quick=False, data_dir=config.DATA_DIR, cache_dir=config.CACHE_DIR, client=None):
    if language not in config.SUPPORTED_LANGUAGES:
        raise ConfigurationError(f"Language {language} not supported")
    city_folder = Path(data_dir) / city
    list_path = city_folder / config.LIST_FILE
    if not list_path.exists():
        raise ConfigurationError(f"Street list not found: {list_path}")

    cache = CacheStore.open(cache_dir)
    street_classifier = build_classifier(cache, language, quick=quick, client=client)
    total = count_csv_records(list_path)
    logger.info("[*] Classifying %s streets for %s (quick mode: %s).", total, city, quick)

    identified_path = city_folder / config.IDENTIFIED_FILE
    unsure_path = city_folder / config.UNSURE_FILE
    with open(identified_path, "w", encoding="utf-8", newline="") as identified_fh, open(
        unsure_path, "w", encoding="utf-8", newline=""
    ) as unsure_fh:
        summary = street_classifier.run(
            iter_csv_records(list_path),
            csv_writer(identified_fh, config.IDENTIFIED_COLUMNS),
            csv_writer(unsure_fh, config.LIST_COLUMNS),
            total=total,
        )

    summary = dict(summary)
    stats = getattr(street_classifier.resolver.client, "stats", None)
    if stats:
        summary.update(stats)
    write_json_atomic(city_folder / config.SUMMARY_FILE, summary)
    logger.info(
        "[+] Done. %s identified (%s women, %s men), %s unsure, %s cache hits.",
        summary["identified"],
        summary["women"],
        summary["men"],
        summary["unsure"],
        summary["cache_hits"],
    )
    return summary


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="WIKIPEDIA STEP: classify the street list of a city by the gender of the person it honors."
    )
    parser.add_argument("-c", "--city", required=True, help="City in your data folder.")
    parser.add_argument("--lang", "--language", dest="lang", required=True, help="Main language of the street names.")
    parser.add_argument(
        "--quick",
        action="store_true",
        help="Trust cached street decisions and skip Wikidata for streets already classified.",
    )
    parser.add_argument("--data-dir", default=str(config.DATA_DIR), help="Root folder holding the city folders.")
    parser.add_argument("--cache-dir", default=str(config.CACHE_DIR), help="Folder holding the JSON caches.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every street decision.")
    args = parser.parse_args(argv)
    if args.lang not in config.SUPPORTED_LANGUAGES:
        parser.error(f"Language {args.lang} not supported")
    return args, parser


def main(argv=None):
    args, parser = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    try:
        process_city(args.city, args.lang, quick=args.quick, data_dir=args.data_dir, cache_dir=args.cache_dir)
    except ConfigurationError as exc:
        parser.error(str(exc))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
