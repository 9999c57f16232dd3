import tempfile
import unittest
from pathlib import Path
from types import SimpleNamespace

from streetgender.strategies import (
    PROMPTS,
    FileExchangeStrategy,
    ManualStrategy,
    OpenAIStrategy,
    get_strategy,
    parse_reply_lines,
    read_reevaluation_file,
    split_by_tokens,
)


def word_count(text: str) -> int:
    return len(text.replace(";", " ").split())


class FakeCompletions:
    def __init__(self, replies):
        self.replies = list(replies)
        self.requests = []

    def create(self, model, messages):
        self.requests.append((model, messages))
        content = self.replies.pop(0)
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class SplitByTokensTests(unittest.TestCase):
    def test_chunks_respect_the_limit(self) -> None:
        words = ["Via Roma", "Via Garibaldi", "Piazza Dante", "Via Verdi"]
        chunks = split_by_tokens(words, "prompt", word_count, token_limit=5)
        self.assertEqual(chunks, ["Via Roma;Via Garibaldi", "Piazza Dante;Via Verdi"])

    def test_oversized_word_gets_its_own_chunk(self) -> None:
        chunks = split_by_tokens(["a b c d e f", "g"], "p", word_count, token_limit=3)
        self.assertEqual(chunks, ["a b c d e f", "g"])

    def test_empty_input(self) -> None:
        self.assertEqual(split_by_tokens([], "p", word_count), [])


class ReplyParsingTests(unittest.TestCase):
    def test_parse_reply_lines(self) -> None:
        reply = "Via Garibaldi;M\n\n  Via Maria Montessori ; F \nnonsense\n"
        self.assertEqual(
            parse_reply_lines(reply),
            [("Via Garibaldi", "M"), ("Via Maria Montessori", "F"), ("nonsense", "")],
        )
        self.assertEqual(parse_reply_lines(None), [])

    def test_read_reevaluation_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "REEVALUATION_INPUT.csv"
            path.write_text("Via Roma;X\nVia Verdi;M\nVia Verdi;F\n", encoding="utf-8")
            self.assertEqual(read_reevaluation_file(path), [("Via Roma", "X"), ("Via Verdi", "M")])

            path.write_text("Via Roma;Q\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                read_reevaluation_file(path)
            path.write_text("Via Roma\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                read_reevaluation_file(path)


class StrategyTests(unittest.TestCase):
    records = [("Via Garibaldi", "Garibaldi"), ("Via Maria Montessori", "Maria Montessori")]

    def test_manual_proposes_unknown_for_everything(self) -> None:
        proposals = ManualStrategy().propose("it", self.records, Path("."))
        self.assertEqual(proposals, [("Via Garibaldi", "X"), ("Via Maria Montessori", "X")])

    def test_openai_strategy_parses_replies(self) -> None:
        completions = FakeCompletions(["Via Garibaldi;M\nVia Maria Montessori;F"])
        client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
        strategy = OpenAIStrategy(client=client, count_tokens=word_count)
        proposals = strategy.propose("it", self.records, Path("."))
        self.assertEqual(proposals, [("Via Garibaldi", "M"), ("Via Maria Montessori", "F")])
        model, messages = completions.requests[0]
        self.assertEqual(model, "gpt-4o-mini")
        self.assertEqual(messages[0], {"role": "system", "content": PROMPTS["it"]})
        self.assertEqual(messages[1]["content"], "Via Garibaldi;Via Maria Montessori")

    def test_openai_strategy_without_prompt(self) -> None:
        strategy = OpenAIStrategy(client=object(), count_tokens=word_count)
        with self.assertLogs("streetgender.strategies", level="ERROR"):
            self.assertEqual(strategy.propose("de", self.records, Path(".")), [])

    def test_declined_confirmation_sends_nothing(self) -> None:
        completions = FakeCompletions([])
        client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
        strategy = OpenAIStrategy(client=client, count_tokens=word_count, confirm=lambda message: False)
        self.assertEqual(strategy.propose("en", self.records, Path(".")), [])
        self.assertEqual(completions.requests, [])

    def test_file_exchange_rereads_until_valid(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            scratch = Path(tmp) / "REEVALUATION_INPUT.csv"
            pastes = iter(["Via Garibaldi;maybe\n", "Via Garibaldi;M\nVia Maria Montessori;F\n"])
            printed = []

            def fake_input(message):
                scratch.write_text(next(pastes), encoding="utf-8")
                return ""

            strategy = FileExchangeStrategy(input_fn=fake_input, output_fn=printed.append, count_tokens=word_count)
            proposals = strategy.propose("en", self.records, Path(tmp))
            self.assertEqual(proposals, [("Via Garibaldi", "M"), ("Via Maria Montessori", "F")])
            self.assertTrue(any("gender identifier" in line for line in printed))
            self.assertEqual(scratch.read_text(encoding="utf-8"), "")

    def test_get_strategy(self) -> None:
        self.assertIsInstance(get_strategy("manual"), ManualStrategy)
        self.assertIsInstance(get_strategy("api", client=object(), count_tokens=word_count), OpenAIStrategy)
        with self.assertRaises(ValueError):
            get_strategy("telepathy")


if __name__ == "__main__":
    unittest.main()
