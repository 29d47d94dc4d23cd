from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
for entry in (ROOT, ROOT / "src"):
    if str(entry) not in sys.path:
        sys.path.insert(0, str(entry))


import pytest

from strudel_lsp.diagnostics import DiagnosticEngine
from strudel_lsp.notation import NotationDelegate
from strudel_lsp.vocabulary import VocabularyRegistry
from tests.mini_fakes import FakeMiniParser


@pytest.fixture
def registry() -> VocabularyRegistry:
    return VocabularyRegistry()


@pytest.fixture
def fake_parser() -> FakeMiniParser:
    return FakeMiniParser()


@pytest.fixture
def engine(registry: VocabularyRegistry, fake_parser: FakeMiniParser) -> DiagnosticEngine:
    return DiagnosticEngine(registry, NotationDelegate(fake_parser))
