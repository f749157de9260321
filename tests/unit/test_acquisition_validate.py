from canarywatch.services.acquisition.metadata import detect_content_type, extract_metadata
from canarywatch.services.acquisition.validate import (
    MAX_CONTENT_LENGTH,
    TRUNCATION_MARKER,
    validate_content,
)


def _words(count: int) -> str:
    return " ".join(["capability"] * count)


def test_short_content_is_invalid():
    result = validate_content("Too short to be an article.")
    assert not result.valid
    assert "too short" in result.reason


def test_enough_characters_but_few_words_is_invalid():
    result = validate_content(_words(150))
    assert not result.valid
    assert result.word_count == 150


def test_paywalled_content_is_invalid():
    result = validate_content(_words(400) + " Subscribe to read the rest.")
    assert not result.valid
    assert result.paywalled
    assert result.reason == "Paywall or login wall detected"


def test_valid_content_passes_untouched():
    text = _words(400)
    result = validate_content(f"  {text}  ")
    assert result.valid
    assert result.content == text
    assert not result.truncated


def test_long_content_is_truncated_with_marker():
    result = validate_content(_words(20_000))
    assert result.valid
    assert result.truncated
    assert result.content.endswith(TRUNCATION_MARKER)
    assert len(result.content) == MAX_CONTENT_LENGTH + len(TRUNCATION_MARKER)


def test_detect_content_type():
    assert detect_content_type("https://arxiv.org/abs/2401.00001") == "paper"
    assert detect_content_type("https://example.com/x", title="Annual AI Index report") == "report"
    assert detect_content_type("https://metr.org/blog/post") == "blog"
    assert detect_content_type("https://example.com/news/item") == "article"


def test_extract_metadata_prefers_open_graph():
    html = """
    <html lang="en"><head>
      <title>Fallback title</title>
      <meta property="og:title" content="Frontier evals update">
      <meta name="description" content="New long-horizon task results">
      <meta name="author" content="Eval Team">
      <meta property="article:published_time" content="2026-02-28T10:00:00Z">
    </head><body></body></html>
    """
    metadata = extract_metadata(html, "https://metr.org/blog/update")
    assert metadata["title"] == "Frontier evals update"
    assert metadata["description"] == "New long-horizon task results"
    assert metadata["author"] == "Eval Team"
    assert metadata["published_time"] == "2026-02-28T10:00:00Z"
    assert metadata["language"] == "en"
    assert metadata["content_type"] == "blog"
    assert metadata["source_url"] == "https://metr.org/blog/update"
