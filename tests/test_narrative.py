import json
import os
import sys
import unittest
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import numpy as np
import pandas as pd

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from narrative import (  # noqa: E402
    NarrativeError,
    NarrativeGenerator,
    build_prompt,
    build_summary,
    client_tuning_kwargs,
)


def _completion(text):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


class SummaryTests(unittest.TestCase):
    def test_summary_keeps_selected_fields_and_nulls(self):
        dataset = pd.DataFrame(
            {
                "Name": ["United States", "Texas"],
                "HispanicPop": [1000.0, 600.0],
                "TotalPop": [3500.0, 1000.0],
                "HispanicShareOf18To64": [np.nan, 30.0],
            }
        )
        summary = build_summary(dataset)

        self.assertEqual(summary[0], {"Name": "United States", "HispanicPop": 1000.0, "HispanicShareOf18To64": None})
        self.assertNotIn("TotalPop", summary[1])
        self.assertIsInstance(summary[1]["HispanicPop"], float)

    def test_prompt_embeds_summary_as_json(self):
        summary = [{"Name": "Texas", "HispanicPop": 600.0}]
        prompt = build_prompt(summary)
        self.assertIn("Hispanic retail opportunity", prompt)
        self.assertIn(json.dumps(summary, indent=2), prompt)


class NarrativeGeneratorTests(unittest.TestCase):
    def test_generate_returns_stripped_completion(self):
        client = MagicMock()
        client.chat.completions.create.return_value = _completion("  Invest in bilingual CX.  ")
        generator = NarrativeGenerator(model="gpt-test", client=client, max_tokens=200)

        text = generator.generate([{"Name": "Texas"}])

        self.assertEqual(text, "Invest in bilingual CX.")
        kwargs = client.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["model"], "gpt-test")
        self.assertEqual(kwargs["max_tokens"], 200)
        self.assertIn('"Name": "Texas"', kwargs["messages"][0]["content"])

    def test_service_error_is_wrapped(self):
        client = MagicMock()
        client.chat.completions.create.side_effect = RuntimeError("rate limited")
        with self.assertRaises(NarrativeError) as ctx:
            NarrativeGenerator(client=client).generate([])
        self.assertIn("rate limited", str(ctx.exception))

    def test_empty_completion_is_an_error(self):
        client = MagicMock()
        client.chat.completions.create.return_value = _completion(None)
        with self.assertRaises(NarrativeError):
            NarrativeGenerator(client=client).generate([])

    @patch.dict(os.environ, {"AZURE_OPENAI_ENDPOINT": "https://example.openai.azure.com", "AZURE_OPENAI_API_KEY": ""})
    def test_misconfigured_client_fails_inside_generate(self):
        with self.assertRaises(NarrativeError):
            NarrativeGenerator().generate([])


class TuningTests(unittest.TestCase):
    @patch.dict(os.environ, {"OPENAI_TIMEOUT_SECONDS": "12", "OPENAI_MAX_RETRIES": "-3"})
    def test_env_values_are_clamped(self):
        self.assertEqual(client_tuning_kwargs(), {"timeout": 12.0, "max_retries": 0})

    @patch.dict(os.environ, {"OPENAI_TIMEOUT_SECONDS": "soon", "OPENAI_MAX_RETRIES": "x"})
    def test_bad_env_values_fall_back(self):
        self.assertEqual(client_tuning_kwargs(), {"timeout": 60.0, "max_retries": 1})


if __name__ == "__main__":
    unittest.main()
