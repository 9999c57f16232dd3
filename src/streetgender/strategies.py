"""Secondary classifiers for the unsure street list.

Every strategy takes the pending ``(streetName, cleanName)`` records and returns
raw ``(streetName, genderCode)`` proposals; validation happens in the merge.
"""

from __future__ import annotations

import csv
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

from tqdm import tqdm

from . import config
from .models import Gender, is_gender

logger = logging.getLogger(__name__)

Proposal = tuple[str, str]

PROMPTS: dict[str, str] = {
    "it": f"""
Sei un assistente che legge delle liste di nomi di vie, e che risponde unicamente utilizzando il formato specificato.
Non rispondere con nessun altro testo, per nessuna ragione: non importa se sia un consiglio, un suggerimento, un'osservazione, ecc.
Di questi nomi di vie in italiano, quali pensi siano dedicati a delle persone (ovvero non a oggetti, luoghi, ect.)?
Rispondi unicamente con una lista di nomeVia;genere uno per riga
Per genere usa {Gender.MAN.value} per maschile, {Gender.WOMAN.value} per femminile, {Gender.UNKNOWN.value} per sconosciuto.
Rispondi solamente con nomi che appartengono alla lista fornita, non inventarti degli elementi per alcuna ragione.
""".strip(),
    "en": f"""
You are an assistant made to classify street names, and that will only reply using the specified format.
Do not reply with anything else, for any reason: it doesn't matter if it's a suggestion, a tip, an observation, etc.
Of these street names in English, which ones do you think are dedicated to people (i.e. not objects, places, etc.)?
Reply only with a list of streetName;gender one per line.
For the gender use {Gender.MAN.value} for male, {Gender.WOMAN.value} for female, {Gender.UNKNOWN.value} for unknown.
Reply only with names that belong to the list provided, do not invent any elements for any reason.
""".strip(),
    "es": f"""
Eres un asistente que clasifica nombres de calles y que solo responde usando el formato especificado.
No respondas con ningún otro texto, por ningún motivo: da igual si es una sugerencia, un consejo, una observación, etc.
De estos nombres de calles en español, ¿cuáles crees que están dedicados a personas (es decir, no a objetos, lugares, etc.)?
Responde únicamente con una lista de nombreCalle;género, uno por línea.
Para el género usa {Gender.MAN.value} para masculino, {Gender.WOMAN.value} para femenino, {Gender.UNKNOWN.value} para desconocido.
Responde solo con nombres que pertenezcan a la lista proporcionada, no inventes elementos por ningún motivo.
""".strip(),
}


class TokenCounter:
    """Counts tokens with tiktoken; the encoding is loaded on first use."""

    def __init__(self, encoding_name: str = config.LLM_ENCODING) -> None:
        self.encoding_name = encoding_name
        self._encoding = None

    def __call__(self, text: str) -> int:
        if not isinstance(text, str):
            raise TypeError("text must be a string")
        if self._encoding is None:
            import tiktoken

            self._encoding = tiktoken.get_encoding(self.encoding_name)
        return len(self._encoding.encode(text))


def split_by_tokens(
    words: list[str],
    prompt: str,
    count_tokens: Callable[[str], int],
    token_limit: int = config.LLM_TOKEN_LIMIT,
) -> list[str]:
    """Group words into ';'-joined chunks that fit the token limit together with the prompt."""
    chunks: list[str] = []
    current: list[str] = []
    for word in words:
        candidate = ";".join([prompt, *current, word])
        if count_tokens(candidate) > token_limit and current:
            chunks.append(";".join(current))
            current = [word]
        else:
            current.append(word)
    if current:
        chunks.append(";".join(current))
    return chunks


def parse_reply_lines(text: Optional[str]) -> list[Proposal]:
    """Split a `streetName;gender` reply into trimmed two-field proposals."""
    proposals: list[Proposal] = []
    for line in (text or "").strip().splitlines():
        line = line.strip()
        if not line:
            continue
        fields = [part.strip() for part in line.split(config.CSV_DELIMITER)]
        proposals.append((fields[0], fields[1] if len(fields) > 1 else ""))
    return proposals


def read_reevaluation_file(path: Path) -> list[Proposal]:
    """Parse the pasted reply file; raise ValueError when it is not a valid two-column gender list."""
    with open(path, "r", encoding="utf-8") as fh:
        lines = [line.strip() for line in fh.read().strip().splitlines() if line.strip()]
    rows = list(csv.reader(lines, delimiter=config.CSV_DELIMITER))
    if not rows:
        raise ValueError("CSV issue: the file is empty")
    if any(len(row) < 2 for row in rows):
        raise ValueError("CSV issue: The records needs to have two columns")
    if any(not is_gender(row[1].strip()) for row in rows):
        raise ValueError("CSV issue: The second column needs to be a gender identifier")
    seen = set()
    proposals: list[Proposal] = []
    for row in rows:
        name = row[0].strip()
        if name in seen:
            continue
        seen.add(name)
        proposals.append((name, row[1].strip()))
    return proposals


class ReevaluationStrategy(ABC):
    """One way of proposing genders for the unsure streets."""

    mode: str = ""
    description: str = ""

    @abstractmethod
    def propose(self, lang: str, records: list[tuple[str, str]], city_folder: Path) -> list[Proposal]:
        raise NotImplementedError


class _PromptedStrategy(ReevaluationStrategy):
    def __init__(
        self,
        count_tokens: Optional[Callable[[str], int]] = None,
        token_limit: int = config.LLM_TOKEN_LIMIT,
        confirm: Optional[Callable[[str], bool]] = None,
    ) -> None:
        self.count_tokens = count_tokens or TokenCounter()
        self.token_limit = token_limit
        self.confirm = confirm

    def _chunks(self, lang: str, records: list[tuple[str, str]]) -> tuple[Optional[str], list[str]]:
        prompt = PROMPTS.get(lang)
        if not prompt:
            logger.error("[!] No prompt available for %s", lang)
            return None, []
        chunks = split_by_tokens([record[0] for record in records], prompt, self.count_tokens, self.token_limit)
        return prompt, chunks

    def _proceed(self, message: str) -> bool:
        if self.confirm is None:
            return True
        if self.confirm(message):
            return True
        logger.info("[-] Aborting...")
        return False


class OpenAIStrategy(_PromptedStrategy):
    mode = "api"
    description = "Use the OpenAI API (requires an API key and sufficient credits)"

    def __init__(self, client=None, model: str = config.LLM_MODEL, **kwargs) -> None:
        super().__init__(**kwargs)
        self.client = client
        self.model = model

    def _get_client(self):
        if self.client is None:
            from openai import OpenAI

            if not config.OPENAI_API_KEY:
                raise RuntimeError("OPENAI_API_KEY is not set. Export it or put it in your environment.")
            self.client = OpenAI(api_key=config.OPENAI_API_KEY)
        return self.client

    def propose(self, lang, records, city_folder):
        prompt, chunks = self._chunks(lang, records)
        if not chunks:
            return []
        total_tokens = sum(self.count_tokens(chunk) for chunk in chunks) + self.count_tokens(prompt) * len(chunks)
        logger.info("[*] Total token count: %s", total_tokens)
        logger.info(
            "[*] Estimated cost: %.4f USD",
            total_tokens / 1_000_000 * config.LLM_USD_PER_MILLION_TOKENS,
        )
        logger.info("[*] Resulting calls: %s", len(chunks))
        if not self._proceed("Do you want to proceed?"):
            return []

        client = self._get_client()
        proposals: list[Proposal] = []
        for chunk in tqdm(chunks, desc="Querying model", unit="call"):
            response = client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": prompt},
                    {"role": "user", "content": chunk},
                ],
            )
            proposals.extend(parse_reply_lines(response.choices[0].message.content))
        return proposals


class FileExchangeStrategy(_PromptedStrategy):
    """Copy/paste round trips with a chat UI, using a scratch CSV inside the city folder."""

    mode = "file"
    description = "Use a chat UI by hand, pasting each reply into a scratch file"

    def __init__(self, input_fn: Callable[[str], str] = input, output_fn: Callable[[str], None] = print, **kwargs):
        super().__init__(**kwargs)
        self.input_fn = input_fn
        self.output_fn = output_fn

    def propose(self, lang, records, city_folder):
        prompt, chunks = self._chunks(lang, records)
        if not chunks:
            return []
        logger.info("[*] You will have to send %s messages.", len(chunks))
        if not self._proceed("Do you want to proceed?"):
            return []

        scratch = Path(city_folder) / config.REEVALUATION_INPUT_FILE
        scratch.write_text("", encoding="utf-8")
        logger.info("[*] Paste each reply into %s", scratch)

        proposals: list[Proposal] = []
        for index, chunk in enumerate(chunks, start=1):
            self.output_fn(f"\n----- message {index}/{len(chunks)} -----\n{prompt}\n{chunk}\n")
            while True:
                self.input_fn("Paste the reply into the input file, then press Enter...")
                try:
                    proposals.extend(read_reevaluation_file(scratch))
                    break
                except ValueError as exc:
                    self.output_fn(str(exc))
            scratch.write_text("", encoding="utf-8")
        return proposals


class ManualStrategy(ReevaluationStrategy):
    mode = "manual"
    description = "Re-evaluate every entry by hand"

    def propose(self, lang, records, city_folder):
        return [(street_name, Gender.UNKNOWN.value) for street_name, *_ in records]


STRATEGIES: dict[str, type[ReevaluationStrategy]] = {
    OpenAIStrategy.mode: OpenAIStrategy,
    FileExchangeStrategy.mode: FileExchangeStrategy,
    ManualStrategy.mode: ManualStrategy,
}


def get_strategy(mode: str, **kwargs) -> ReevaluationStrategy:
    try:
        strategy_cls = STRATEGIES[mode]
    except KeyError:
        raise ValueError(f"Unknown re-evaluation mode: {mode}") from None
    if strategy_cls is ManualStrategy:
        return strategy_cls()
    return strategy_cls(**kwargs)
