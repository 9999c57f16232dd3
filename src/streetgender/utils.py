import csv
import json
import logging
import os
import time
from pathlib import Path

import requests

from . import config

logger = logging.getLogger(__name__)


def is_qid(value):
    """Return True if the value looks like a Wikidata item id (Q*)."""
    if not isinstance(value, str):
        return False
    return bool(config.QID_EXACT_PATTERN.fullmatch(value.strip()))


def normalize_qid(value):
    """Uppercase and strip a user supplied id; return None when it is not a QID."""
    if not isinstance(value, str):
        return None
    candidate = value.strip().upper()
    return candidate if is_qid(candidate) else None


def read_json(path):
    """Read JSON from disk and return the decoded payload."""
    with open(Path(path), "r", encoding="utf-8") as fh:
        return json.load(fh)


def write_json_atomic(path, payload, *, indent=2):
    """Persist JSON via a temp file and atomic rename."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_suffix(path.suffix + ".tmp")
    with open(temp_path, "w", encoding="utf-8") as fh:
        json.dump(payload, fh, ensure_ascii=False, indent=indent)
        fh.write("\n")
        fh.flush()
        os.fsync(fh.fileno())
    os.replace(temp_path, path)


def dump_links(links):
    """Compact JSON rendering used for the wikiJSON column."""
    return json.dumps(links, ensure_ascii=False, separators=(",", ":"))


def iter_csv_records(path, *, skip_header=True):
    """Yield rows of a semicolon CSV lazily, skipping blank lines."""
    with open(Path(path), "r", encoding="utf-8", newline="") as fh:
        reader = csv.reader(fh, delimiter=config.CSV_DELIMITER)
        if skip_header:
            next(reader, None)
        for row in reader:
            if not row or not any(cell.strip() for cell in row):
                continue
            yield row


def count_csv_records(path):
    """Return the number of data rows in a CSV file (best-effort)."""
    try:
        return sum(1 for _ in iter_csv_records(path))
    except OSError:
        return None


def csv_writer(fh, columns):
    """Return a semicolon CSV writer that already emitted the header row."""
    writer = csv.writer(fh, delimiter=config.CSV_DELIMITER, lineterminator="\n")
    writer.writerow(columns)
    return writer


def write_csv(path, columns, rows):
    """Write a complete CSV file (header + rows)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as fh:
        writer = csv_writer(fh, columns)
        for row in rows:
            writer.writerow(row)


def get_json(params=None, *, endpoint=config.API_ENDPOINT, session=None):
    """Wrapper around requests.get with a timeout, bounded retries and default MediaWiki params."""
    query = dict(params or {})
    query.setdefault("format", "json")
    http = session or requests
    for attempt in range(config.API_MAX_ATTEMPTS):
        try:
            response = http.get(
                endpoint,
                headers=config.HEADERS,
                params=query,
                timeout=config.API_TIMEOUT,
            )
        except requests.RequestException as exc:
            logger.warning("    [!] Request failed (%s): %s", query.get("action"), exc)
        else:
            if response.status_code == 200:
                try:
                    return response.json()
                except ValueError as exc:
                    logger.warning("    [!] Malformed JSON from %s: %s", endpoint, exc)
                    return None
            if response.status_code not in config.RETRY_STATUS_CODES:
                logger.warning("    [!] HTTP %s for %s", response.status_code, endpoint)
                return None
            logger.warning("    [!] HTTP %s (attempt %s/%s)", response.status_code, attempt + 1, config.API_MAX_ATTEMPTS)
        if attempt < config.API_MAX_ATTEMPTS - 1:
            time.sleep(config.API_BACKOFF_SECONDS * (2**attempt))
    return None
