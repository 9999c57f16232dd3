"""
inspect_unsure.py - re-evaluate the unsure street list with a secondary classifier.

Reads:
  - data/<city>/list_unsure.csv            (streetName;cleanName)
  - data/<city>/list_unsure_confirmed.csv  (when resuming)

Writes:
  - data/<city>/list_unsure_reevaluated_tbc.csv  (validated proposals)
  - data/<city>/list_unsure_confirmed.csv        (streetName;gender;wikiJSON)
  - cache/*.json                                 (flushed after every reviewed entry)
"""

import argparse
import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from tqdm import tqdm

from . import config
from .caching import CacheStore
from .models import ConfigurationError, Gender, ReevaluationRecordError, is_gender
from .strategies import STRATEGIES, get_strategy
from .utils import csv_writer, dump_links, iter_csv_records, normalize_qid, write_csv
from .wiki import LinkEnricher, WikidataClient, get_links_languages

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReviewDecision:
    gender: Gender
    wikidata_id: Optional[str] = None


def validate_proposal(proposal, known_streets):
    """Return (streetName, Gender) or raise ReevaluationRecordError."""
    if not isinstance(proposal, (list, tuple)) or len(proposal) < 2:
        raise ReevaluationRecordError("MALFORMED", f"Expected streetName;gender, got {proposal!r}")
    street_name, code = str(proposal[0]).strip(), str(proposal[1]).strip()
    if not street_name:
        raise ReevaluationRecordError("MALFORMED", "Empty street name")
    if not is_gender(code):
        raise ReevaluationRecordError("INVALID_GENDER", f"{code!r} is not a gender identifier")
    if street_name not in known_streets:
        raise ReevaluationRecordError("UNKNOWN_STREET", f"{street_name!r} is not in the unsure list")
    return street_name, Gender(code)


def filter_proposals(proposals, known_streets):
    """Keep valid proposals for known streets, first occurrence per street; count the drops by code."""
    accepted = []
    seen = set()
    drops = Counter()
    for proposal in proposals:
        try:
            street_name, gender = validate_proposal(proposal, known_streets)
        except ReevaluationRecordError as exc:
            drops[exc.code] += 1
            logger.debug("    [-] Dropped proposal: %s", exc)
            continue
        if street_name in seen:
            drops["DUPLICATE"] += 1
            continue
        seen.add(street_name)
        accepted.append((street_name, gender))
    return accepted, drops


class AcceptAllReviewer:
    """Takes every proposal as final, without a Wikidata id."""

    def review(self, street_name, proposed):
        return ReviewDecision(proposed)


class InteractiveReviewer:
    """Asks for the final gender and, for people, the Wikidata id."""

    CHOICES = {
        "m": Gender.MAN,
        "f": Gender.WOMAN,
        "x": Gender.UNKNOWN,
    }

    def __init__(self, input_fn=input, output_fn=print):
        self.input_fn = input_fn
        self.output_fn = output_fn

    def _ask_gender(self, proposed):
        while True:
            answer = self.input_fn(
                f"Gender? [m]ale, [f]emale, [x] not a person, [s]kip (default {proposed.value}): "
            ).strip().lower()
            if not answer:
                return proposed
            if answer == "s":
                return None
            if answer in self.CHOICES:
                return self.CHOICES[answer]
            self.output_fn("Please answer m, f, x or s.")

    def _ask_wikidata_id(self):
        while True:
            answer = self.input_fn("What is the Wikidata ID for this person? (leave blank if unknown): ").strip()
            if not answer:
                return None
            qid = normalize_qid(answer)
            if qid:
                return qid
            self.output_fn(
                "This is not a Wikidata ID: Wikidata IDs are the identifiers that start with a Q, "
                "you can find them in the page URL"
            )

    def review(self, street_name, proposed):
        self.output_fn(f"\nStreet name:\n{street_name}\nPossible gender: {proposed.value}")
        gender = self._ask_gender(proposed)
        if gender is None:
            return None
        if gender is Gender.UNKNOWN:
            return ReviewDecision(gender)
        return ReviewDecision(gender, self._ask_wikidata_id())


def confirmed_row_from_cache(cache, street_name):
    """Row for an unsure street that the cache already resolved to a person, else None."""
    decision = cache.lookup_street(street_name)
    if decision is None or not decision.gender.identified:
        return None
    links = cache.links_for(decision)
    return [street_name, decision.gender.value, dump_links(links) if decision.gender is Gender.WOMAN else ""]


def load_confirmed_rows(path):
    """Rows of a previously written confirmed file, padded to three columns."""
    rows = []
    for row in iter_csv_records(path):
        rows.append((list(row) + ["", "", ""])[:3])
    return rows


class ReevaluationMerge:
    """Writes reviewed re-verdicts into the cache and the confirmed partition."""

    def __init__(self, cache, enricher, languages, reviewer):
        self.cache = cache
        self.enricher = enricher
        self.languages = list(languages)
        self.reviewer = reviewer
        self.summary = Counter()

    def apply_decision(self, street_name, decision):
        """Update the cache like a fresh classification and return the confirmed row.

        Streets reviewed as not a person are kept as X rows so a resumed run
        skips them; finalize only counts F and M rows.
        """
        gender, wikidata_id = decision.gender, normalize_qid(decision.wikidata_id)
        if gender is Gender.UNKNOWN:
            self.cache.record_street_decision(street_name, gender)
            self.summary["not_a_person"] += 1
            return [street_name, gender.value, ""]

        self.cache.record_street_decision(street_name, gender, wikidata_id)
        links = ""
        if gender is Gender.WOMAN:
            record = {}
            if wikidata_id:
                record = self.cache.record_woman(wikidata_id, self.enricher.fetch(wikidata_id, self.languages))
            links = dump_links(record)
            self.summary["women"] += 1
        else:
            if wikidata_id:
                self.cache.record_man(wikidata_id)
            self.summary["men"] += 1
        return [street_name, gender.value, links]

    def run(self, unsure_records, strategy, lang, city_folder, *, previous_rows=()):
        city_folder = Path(city_folder)
        unsure_names = {record[0] for record in unsure_records}

        confirmed_rows = [list(row) for row in previous_rows]
        confirmed_names = {row[0] for row in confirmed_rows}
        for street_name, *_ in unsure_records:
            if street_name in confirmed_names:
                continue
            row = confirmed_row_from_cache(self.cache, street_name)
            if row:
                confirmed_rows.append(row)
                confirmed_names.add(street_name)
        self.summary["resumed"] = len(confirmed_rows)

        pending = [record for record in unsure_records if record[0] not in confirmed_names]
        logger.info("[*] %s unsure streets, %s already confirmed, %s to re-evaluate.",
                    len(unsure_records), len(confirmed_rows), len(pending))

        proposals = strategy.propose(lang, pending, city_folder) if pending else []
        accepted, drops = filter_proposals(proposals, unsure_names)
        accepted = [item for item in accepted if item[0] not in confirmed_names]
        self.summary["proposals"] = len(proposals)
        self.summary["accepted"] = len(accepted)
        self.summary["dropped"] = sum(drops.values())
        for code, count in drops.items():
            self.summary[f"dropped_{code.lower()}"] = count
        logger.info(
            "[*] %s records need confirmation. There were %s invalid records.",
            len(accepted),
            sum(drops.values()),
        )

        confirmed_path = city_folder / config.CONFIRMED_FILE
        if accepted:
            write_csv(
                city_folder / config.REEVALUATED_FILE,
                config.REEVALUATED_COLUMNS,
                [(street_name, gender.value) for street_name, gender in accepted],
            )
        else:
            logger.info("[-] No new records to confirm.")

        with open(confirmed_path, "w", encoding="utf-8", newline="") as fh:
            writer = csv_writer(fh, config.IDENTIFIED_COLUMNS)
            for row in confirmed_rows:
                writer.writerow(row)
            fh.flush()
            for street_name, proposed in tqdm(accepted, desc="Reviewing", unit="street", disable=not accepted):
                decision = self.reviewer.review(street_name, proposed)
                if decision is None:
                    self.summary["skipped"] += 1
                    continue
                row = self.apply_decision(street_name, decision)
                if row:
                    writer.writerow(row)
                    fh.flush()
                self.cache.flush()
        self.cache.flush()
        return dict(self.summary)


def reevaluate_city(
    city,
    language,
    mode,
    *,
    resume=False,
    reviewer=None,
    strategy=None,
    data_dir=config.DATA_DIR,
    cache_dir=config.CACHE_DIR,
    client=None,
):
    if language not in config.SUPPORTED_LANGUAGES:
        raise ConfigurationError(f"Language {language} not supported")
    city_folder = Path(data_dir) / city
    unsure_path = city_folder / config.UNSURE_FILE
    if not unsure_path.exists():
        raise ConfigurationError(f"Unsure list not found: {unsure_path}")

    cache = CacheStore.open(cache_dir)
    confirmed_path = city_folder / config.CONFIRMED_FILE
    previous_rows = load_confirmed_rows(confirmed_path) if resume and confirmed_path.exists() else []
    if previous_rows:
        logger.info("[*] Resuming from %s confirmed records.", len(previous_rows))

    unsure_records = [tuple(row[:2]) if len(row) > 1 else (row[0], row[0]) for row in iter_csv_records(unsure_path)]
    merge = ReevaluationMerge(
        cache,
        LinkEnricher(client or WikidataClient()),
        get_links_languages(language),
        reviewer or AcceptAllReviewer(),
    )
    summary = merge.run(
        unsure_records,
        strategy or get_strategy(mode),
        language,
        city_folder,
        previous_rows=previous_rows,
    )
    logger.info("[+] Re-evaluation done: %s", summary)
    return summary


def _confirm(message):
    return input(f"{message} [Y/n] ").strip().lower() in {"", "y", "yes"}


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description=(
            "Re-evaluate the list of unsure streets: 'api' uses the OpenAI API, "
            "'file' copy-pastes prompts to a chat UI, 'manual' sorts every entry by hand."
        )
    )
    parser.add_argument("-c", "--city", required=True, help="City in your data folder.")
    parser.add_argument("--lang", "--language", dest="lang", required=True, help="Main language of the street names.")
    parser.add_argument("--mode", choices=sorted(STRATEGIES), default="manual", help="Re-evaluation strategy.")
    parser.add_argument("--resume", action="store_true", help="Resume from an existing confirmed list.")
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Accept proposals without interactive review or cost confirmation.",
    )
    parser.add_argument("--data-dir", default=str(config.DATA_DIR), help="Root folder holding the city folders.")
    parser.add_argument("--cache-dir", default=str(config.CACHE_DIR), help="Folder holding the JSON caches.")
    args = parser.parse_args(argv)
    if args.lang not in config.SUPPORTED_LANGUAGES:
        parser.error(f"Language {args.lang} not supported")
    return args, parser


def main(argv=None):
    args, parser = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    strategy_kwargs = {} if args.yes or args.mode == "manual" else {"confirm": _confirm}
    try:
        reevaluate_city(
            args.city,
            args.lang,
            args.mode,
            resume=args.resume,
            reviewer=AcceptAllReviewer() if args.yes else InteractiveReviewer(),
            strategy=get_strategy(args.mode, **strategy_kwargs),
            data_dir=args.data_dir,
            cache_dir=args.cache_dir,
        )
    except ConfigurationError as exc:
        parser.error(str(exc))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
