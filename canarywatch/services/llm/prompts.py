from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from canarywatch.utils.hashing import sha256_text

PROMPT_DIR = Path(__file__).resolve().parent / "prompt_templates"

EXTRACTION_PROMPT_VERSION = "extraction_v1"


@dataclass(frozen=True)
class PromptTemplate:
    version: str
    text: str

    @property
    def checksum(self) -> str:
        return sha256_text(self.text)


@lru_cache
def load_prompt(version: str) -> PromptTemplate:
    path = PROMPT_DIR / f"{version}.txt"
    if not path.is_file():
        raise FileNotFoundError(f"Unknown prompt version: {version}")
    return PromptTemplate(version=version, text=path.read_text(encoding="utf-8").strip())
