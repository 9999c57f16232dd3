import os
import re
from pathlib import Path

# HTTP identity and base endpoints
HEADERS = {"User-Agent": "StreetGender/1.0 (street name gender classification)"}
API_ENDPOINT = "https://www.wikidata.org/w/api.php"

# Request tuning knobs
API_TIMEOUT = 30  # Seconds per HTTP request
API_MAX_ATTEMPTS = 2  # One retry
API_BACKOFF_SECONDS = 1.0
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}
SEARCH_LIMIT = 7  # Candidates requested per name

# Wikidata claim used for classification and its accepted values
SEX_OR_GENDER_PROPERTY = "P21"
WOMAN_CLASSIFIERS = frozenset({"Q6581072", "Q1052281"})  # female, trans woman
MAN_CLASSIFIERS = frozenset({"Q6581097", "Q2449503"})  # male, trans man

# Languages for Wikipedia links
FALLBACK_LANGUAGE = "en"
SUPPORTED_LANGUAGES = frozenset(
    {
        "ar", "ca", "cs", "da", "de", "el", "en", "eo", "es", "et", "eu", "fi", "fr", "ga", "gl", "he",
        "hr", "hu", "id", "it", "ja", "ko", "lt", "lv", "nl", "no", "pl", "pt", "ro", "ru", "sk", "sl",
        "sr", "sv", "tr", "uk", "zh",
    }
)

# Input/output locations
DATA_DIR = Path("data")
CACHE_DIR = Path("cache")
WOMEN_CACHE_FILE = "women-wikidata.json"
MEN_CACHE_FILE = "men-wikidata.json"
STREETS_CACHE_FILE = "streets.json"
LIST_FILE = "list.csv"
IDENTIFIED_FILE = "list_wiki.csv"
UNSURE_FILE = "list_unsure.csv"
REEVALUATED_FILE = "list_unsure_reevaluated_tbc.csv"
CONFIRMED_FILE = "list_unsure_confirmed.csv"
REEVALUATION_INPUT_FILE = "REEVALUATION_INPUT.csv"
STATS_FILE = "stats.json"
NO_LINK_FILE = "noLinkList.txt"
SUMMARY_FILE = "apply_wikipedia_summary.json"

# CSV layout
CSV_DELIMITER = ";"
LIST_COLUMNS = ("streetName", "cleanName")
IDENTIFIED_COLUMNS = ("streetName", "gender", "wikiJSON")
REEVALUATED_COLUMNS = ("streetName", "gender")

# Checkpointing
CACHE_FLUSH_EVERY = 5  # Newly confirmed records between cache flushes

# Secondary (LLM) classification
LLM_MODEL = "gpt-4o-mini"
LLM_TOKEN_LIMIT = 4000
LLM_ENCODING = "cl100k_base"
LLM_USD_PER_MILLION_TOKENS = 5
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")

# ID validation
QID_EXACT_PATTERN = re.compile(r"^Q\d+$")
