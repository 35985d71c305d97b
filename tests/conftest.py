"""
Pytest configuration and shared fixtures for the listing generator tests.
"""
import os
import sys
import tempfile
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

# Keep test runs from writing into the service logs/ directory
os.environ.setdefault("LISTING_LOG_DIR", tempfile.mkdtemp(prefix="listing-logs-"))

from constraints import load_profiles  # noqa: E402
from domain import GenerationRequest, GenerationResult  # noqa: E402
from settings import Settings  # noqa: E402


VOCAB = (
    "argan", "oil", "hair", "serum", "shine", "frizz", "control", "repair", "split", "ends",
    "silky", "smooth", "vegan", "formula", "cold", "pressed", "lightweight", "nourishing",
    "heat", "protection", "daily", "care", "glossy", "finish", "dry", "damaged", "curly",
    "straight", "salon", "quality",
)


def filler(length: int, lead: str = "") -> str:
    """Text of exactly `length` characters built from distinct words."""
    parts = [lead] if lead else []
    i = 0
    while len(" ".join(parts)) < length:
        parts.append(f"{VOCAB[i % len(VOCAB)]}{i // len(VOCAB) or ''}")
        i += 1
    text = " ".join(parts)[:length]
    if text.endswith(" "):
        text = text[:-1] + "x"
    return text


def search_terms(max_bytes: int = 200) -> str:
    """Distinct whole tokens, never truncated."""
    tokens: List[str] = []
    i = 0
    while True:
        tok = f"{VOCAB[i % len(VOCAB)]}{i // len(VOCAB) or ''}"
        if len(" ".join(tokens + [tok])) > max_bytes:
            return " ".join(tokens)
        tokens.append(tok)
        i += 1


def bullet_line(length: int = 200, label: str = "Deep hydration", marker: str = "•") -> str:
    # visible text is "Label: body"
    return f"{marker} **{label}:** {filler(length - len(label) - 2)}"


def title_section(lengths: Sequence[int] = (180, 185), brand: str = "Lumina") -> str:
    lines = ["A) TITLES:"]
    for i, n in enumerate(lengths, start=1):
        lines.append(f"{i}. {filler(n, lead=brand)} ({n} chars)")
    return "\n".join(lines) + "\n"


def bullet_section(count: int = 5, length: int = 200, labels: Optional[Sequence[str]] = None) -> str:
    labels = labels or [f"Benefit number {i}" for i in range(1, count + 1)]
    return "B) BULLET POINTS:\n" + "\n".join(bullet_line(length, label) for label in labels[:count]) + "\n"


def description_section(length: int = 3500, body: Optional[str] = None) -> str:
    body = body if body is not None else filler(length, lead="Discover")
    return f"C) DESCRIPTION: ({len(body)} chars)\n{body}\n"


def backend_section(line: Optional[str] = None) -> str:
    line = search_terms() if line is None else line
    return f"D) BACKEND SEARCH TERMS: ({len(line.encode('utf-8'))} bytes)\n{line}\n"


def listing_block(
    titles: Sequence[int] = (180, 185),
    bullets: int = 5,
    description: int = 3500,
    backend: Optional[str] = None,
    brand: str = "Lumina",
    label: Optional[str] = None,
) -> str:
    parts = [
        title_section(titles, brand),
        bullet_section(bullets),
        description_section(description),
        backend_section(backend),
    ]
    head = f"VARIANT {label}\n" if label else ""
    return head + "\n".join(parts)


def listing_document(*blocks: str, research: Optional[str] = None) -> str:
    text = "\n".join(blocks)
    if research:
        text = research.rstrip("\n") + "\n\n" + text
    return text


class ScriptedBackend:
    """Generation backend fake: replays scripted texts or raises scripted errors."""

    def __init__(self, script: Sequence[Union[str, GenerationResult, Exception]]):
        self.script = list(script)
        self.requests: List[GenerationRequest] = []

    def generate(self, request: GenerationRequest) -> GenerationResult:
        self.requests.append(request)
        if not self.script:
            raise AssertionError(f"unexpected backend call for stage {request.stage}")
        step = self.script.pop(0)
        if isinstance(step, Exception):
            raise step
        if isinstance(step, GenerationResult):
            return step
        return GenerationResult(text=step)

    @property
    def stages(self) -> List[str]:
        return [r.stage for r in self.requests]


@pytest.fixture(scope="session")
def profiles():
    return load_profiles()


@pytest.fixture(scope="session")
def profile(profiles):
    return profiles["standard"]


@pytest.fixture
def test_settings():
    return Settings(openai_api_key="test-key", temperature=0.7)


@pytest.fixture
def make_block() -> Callable[..., str]:
    return listing_block


@pytest.fixture
def make_document() -> Callable[..., str]:
    return listing_document


@pytest.fixture
def valid_document() -> str:
    return listing_document(listing_block())


@pytest.fixture
def scripted_backend() -> Callable[..., ScriptedBackend]:
    return ScriptedBackend
