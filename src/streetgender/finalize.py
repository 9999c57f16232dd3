"""
finalize.py - gender distribution statistics for a classified city.

Reads:
  - data/<city>/list_wiki.csv               (identified)
  - data/<city>/list_unsure_confirmed.csv   (confirmed, optional)

Writes:
  - data/<city>/stats.json
  - data/<city>/noLinkList.txt              (women without any Wikipedia link)
"""

import argparse
import json
import logging
from pathlib import Path

from . import config
from .models import ConfigurationError, Gender
from .utils import iter_csv_records, write_json_atomic

logger = logging.getLogger(__name__)


def _percent(part, total):
    return f"{(part * 100 / total):.1f}" if total else "0.0"


def _parse_links(raw):
    if not raw:
        return {}
    try:
        links = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("[!] Unparseable wikiJSON %r. Counting it as no link.", raw[:80])
        return {}
    return links if isinstance(links, dict) else {}


def combine_records(*paths):
    """Map streetName -> (gender, links); later files override earlier ones."""
    combined = {}
    for path in paths:
        if path is None or not Path(path).exists():
            continue
        for row in iter_csv_records(path):
            street_name = row[0]
            code = row[1].strip() if len(row) > 1 else ""
            if code not in {Gender.WOMAN.value, Gender.MAN.value}:
                continue
            combined[street_name] = (Gender(code), _parse_links(row[2] if len(row) > 2 else ""))
    return combined


def compute_stats(combined):
    stats = {
        "numLink": 0,
        "pcLink": "0.0",
        "numNoLink": 0,
        "pcNoLink": "0.0",
        "numFemale": 0,
        "pcFemale": "0.0",
        "numMale": 0,
        "pcMale": "0.0",
        "totalNames": 0,
    }
    no_link = []
    for street_name, (gender, links) in combined.items():
        if gender is Gender.WOMAN:
            stats["numFemale"] += 1
            if links:
                stats["numLink"] += 1
            else:
                stats["numNoLink"] += 1
                no_link.append(street_name)
        else:
            stats["numMale"] += 1

    stats["totalNames"] = stats["numFemale"] + stats["numMale"]
    stats["pcFemale"] = _percent(stats["numFemale"], stats["totalNames"])
    stats["pcMale"] = _percent(stats["numMale"], stats["totalNames"])
    total_links = stats["numLink"] + stats["numNoLink"]
    stats["pcLink"] = _percent(stats["numLink"], total_links)
    stats["pcNoLink"] = _percent(stats["numNoLink"], total_links)
    return stats, no_link


def finalize_city(city, *, data_dir=config.DATA_DIR):
    city_folder = Path(data_dir) / city
    identified_path = city_folder / config.IDENTIFIED_FILE
    if not identified_path.exists():
        raise ConfigurationError(f"Identified list not found: {identified_path}")
    confirmed_path = city_folder / config.CONFIRMED_FILE
    if not confirmed_path.exists():
        logger.warning("[!] %s not found; using the identified list only.", confirmed_path)

    stats, no_link = compute_stats(combine_records(identified_path, confirmed_path))
    write_json_atomic(city_folder / config.STATS_FILE, stats)
    (city_folder / config.NO_LINK_FILE).write_text("\n".join(no_link), encoding="utf-8")
    logger.info(
        "[+] %s names: %s%% women, %s%% men; %s women without links.",
        stats["totalNames"],
        stats["pcFemale"],
        stats["pcMale"],
        stats["numNoLink"],
    )
    return stats


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Compile the gender statistics of a classified city.")
    parser.add_argument("-c", "--city", required=True, help="City in your data folder.")
    parser.add_argument("--data-dir", default=str(config.DATA_DIR), help="Root folder holding the city folders.")
    return parser.parse_args(argv), parser


def main(argv=None):
    args, parser = parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    try:
        finalize_city(args.city, data_dir=args.data_dir)
    except ConfigurationError as exc:
        parser.error(str(exc))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
