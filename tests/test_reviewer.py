"""
Tests for reviewer module.

Run with: pytest tests/
"""

import asyncio
import json

import pytest

from reviewpilot.models import DiffContext, ReviewComment
from reviewpilot.parsing import (
    MalformedModelOutput,
    extract_json_array,
    parse_review_comments,
    parse_risk_entries,
)
from reviewpilot.providers import ProviderCallFailed
from reviewpilot.reviewer import CodeReviewer, sort_comments

from conftest import FakeBackend, make_gateway


def diff(path, text="+print('hi')"):
    return DiffContext(file_path=path, diff=text, additions=1, deletions=0, language="python")


def comment_json(**fields):
    values = {
        "filePath": "app.py",
        "lineNumber": 3,
        "body": "Possible None dereference",
        "category": "bug",
        "severity": "error",
        "confidence": 0.8,
    }
    values.update(fields)
    return values


# ── Parsing ─────────────────────────────────────────────────────────────────

def test_parse_valid_json():
    """Should parse a JSON array of comments."""
    comments = parse_review_comments(json.dumps([comment_json()]), "app.py")
    assert len(comments) == 1
    assert comments[0].line_number == 3
    assert comments[0].category == "bug"
    assert comments[0].severity == "error"


def test_parse_json_with_markdown_and_prose():
    """Should find the array inside fences and surrounding text."""
    text = "Here is my review [see below]:\n```json\n" + json.dumps([comment_json()]) + "\n```\nThanks!"
    comments = parse_review_comments(text, "app.py")
    assert len(comments) == 1
    assert comments[0].body == "Possible None dereference"


def test_parse_without_array_yields_empty():
    """Malformed output never raises."""
    assert parse_review_comments("not json", "app.py") == []
    assert parse_review_comments('{"not": "an array"}', "app.py") == []
    assert parse_review_comments("", "app.py") == []
    assert parse_review_comments(None, "app.py") == []


def test_extract_json_array_raises_when_missing():
    with pytest.raises(MalformedModelOutput):
        extract_json_array("no brackets here")


def test_parse_deeply_nested_output_yields_empty():
    """Nesting past the decoder's depth limit is malformed output, not a crash."""
    nested = "Sure: " + "[" * 100_000
    assert parse_review_comments(nested, "a.py") == []
    assert parse_risk_entries(nested) == []
    with pytest.raises(MalformedModelOutput):
        extract_json_array(nested)


def test_parse_defaults_and_normalisation():
    """Unknown enums fall back to defaults and missing fields are filled."""
    text = json.dumps([{"body": "x", "category": "nitpick", "severity": "blocker", "side": "left"}])
    [comment] = parse_review_comments(text, "default.py")

    assert comment.file_path == "default.py"
    assert comment.line_number == 1
    assert comment.category == "best_practice"
    assert comment.severity == "warning"
    assert comment.confidence == 0.5
    assert comment.side == "LEFT"


@pytest.mark.parametrize("raw,expected", [(1.7, 1.0), (-0.2, 0.0), ("0.3", 0.3), ("high", 0.5)])
def test_parse_clamps_confidence(raw, expected):
    [comment] = parse_review_comments(json.dumps([comment_json(confidence=raw)]), "app.py")
    assert comment.confidence == pytest.approx(expected)


def test_parse_accepts_snake_case_keys():
    text = json.dumps([{"file_path": "b.py", "line_number": 9, "suggestion_code": "return 1", "body": "b"}])
    [comment] = parse_review_comments(text)
    assert comment.file_path == "b.py"
    assert comment.line_number == 9
    assert comment.suggestion_code == "return 1"


def test_parse_skips_non_object_entries():
    text = json.dumps(["stray", 3, comment_json()])
    assert len(parse_review_comments(text, "app.py")) == 1


def test_parse_risk_entries_limit_and_default_severity():
    text = json.dumps([
        {"type": "security", "severity": 0.9, "description": "a"},
        {"type": "logic", "description": "b"},
        {"type": "performance", "severity": 3, "description": "c"},
        {"type": "breaking", "severity": 0.4, "description": "d"},
    ])
    risks = parse_risk_entries(text)
    assert [r["type"] for r in risks] == ["security", "logic", "performance"]
    assert risks[1]["severity"] == 0.5
    assert risks[2]["severity"] == 1.0


# ── Ordering ────────────────────────────────────────────────────────────────

def test_sort_comments_by_severity_then_confidence():
    """Most severe first, ties broken by higher confidence."""
    comments = [
        ReviewComment(file_path="a", body="1", severity="info", confidence=0.9),
        ReviewComment(file_path="a", body="2", severity="critical", confidence=0.5),
        ReviewComment(file_path="a", body="3", severity="warning", confidence=0.9),
        ReviewComment(file_path="a", body="4", severity="critical", confidence=0.9),
    ]
    ordered = sort_comments(comments)
    assert [(c.severity, c.confidence) for c in ordered] == [
        ("critical", 0.9),
        ("critical", 0.5),
        ("warning", 0.9),
        ("info", 0.9),
    ]


# ── Batch review ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_review_diff_uses_code_review_provider_and_rules():
    """Custom rules land in the prompt sent to the routed provider."""
    anthropic = FakeBackend()
    openai = FakeBackend(lambda prompt: json.dumps([comment_json()]))
    gateway = make_gateway({"anthropic": anthropic, "openai": openai}, routing={"code_review": "openai"})
    reviewer = CodeReviewer(gateway)

    comments = await reviewer.review_diff(diff("app.py"), ["No print statements in library code"])

    assert len(comments) == 1
    assert anthropic.calls == []
    messages, options = openai.calls[0]
    assert "## Custom Rules\nNo print statements in library code" in messages[0].content
    assert "File: app.py" in messages[0].content
    assert options.temperature == 0.2
    assert options.provider == "openai"


@pytest.mark.asyncio
async def test_review_diff_propagates_provider_failure():
    gateway = make_gateway({"openai": FakeBackend(lambda prompt: RuntimeError("boom"))})
    with pytest.raises(ProviderCallFailed):
        await CodeReviewer(gateway).review_diff(diff("app.py"))


@pytest.mark.asyncio
async def test_review_batch_partial_failure():
    """One failing file leaves the other comments intact."""

    def respond(prompt):
        if "File: broken.py" in prompt:
            return RuntimeError("upstream 500")
        if "File: quiet.py" in prompt:
            return "Looks good, no JSON here"
        path = "a.py" if "File: a.py" in prompt else "b.py"
        return json.dumps([comment_json(filePath=path, severity="warning" if path == "a.py" else "critical")])

    gateway = make_gateway({"openai": FakeBackend(respond)})
    batch = await CodeReviewer(gateway, max_concurrency=2).review_batch(
        [diff("a.py"), diff("broken.py"), diff("b.py"), diff("quiet.py")]
    )

    assert batch.failed_files == ["broken.py"]
    assert batch.reviewed_files == ["a.py", "b.py", "quiet.py"]
    assert batch.cancelled_files == []
    assert [c.file_path for c in batch.comments] == ["b.py", "a.py"]


class SlowForOneFile:
    """Answers fast.py at once and blocks on slow.py until cancelled."""

    def __init__(self):
        self.cancelled = False

    async def complete(self, messages, options):
        if "File: slow.py" in messages[-1].content:
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        return json.dumps([comment_json(filePath="fast.py")])


@pytest.mark.asyncio
async def test_review_batch_timeout_cancels_slow_files():
    """Completed results survive a timeout; slow files are reported cancelled."""
    backend = SlowForOneFile()
    gateway = make_gateway({"openai": backend})
    batch = await CodeReviewer(gateway).review_batch([diff("fast.py"), diff("slow.py")], timeout=0.2)

    assert batch.reviewed_files == ["fast.py"]
    assert batch.cancelled_files == ["slow.py"]
    assert len(batch.comments) == 1
    assert backend.cancelled


@pytest.mark.asyncio
async def test_cancelled_batch_hands_back_finished_files():
    """Cancelling the batch still reports what already finished."""
    backend = SlowForOneFile()
    gateway = make_gateway({"openai": backend})
    partial = []

    task = asyncio.create_task(
        CodeReviewer(gateway).review_batch([diff("fast.py"), diff("slow.py")], on_partial=partial.append)
    )
    await asyncio.sleep(0.2)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    [batch] = partial
    assert batch.reviewed_files == ["fast.py"]
    assert batch.cancelled_files == ["slow.py"]
    assert [c.file_path for c in batch.comments] == ["fast.py"]
    assert backend.cancelled


@pytest.mark.asyncio
async def test_deeply_nested_output_reviews_with_no_comments():
    """Pathological output counts as a reviewed file with nothing to say."""
    gateway = make_gateway({"openai": FakeBackend(lambda prompt: "Sure: " + "[" * 100_000)})
    batch = await CodeReviewer(gateway).review_batch([diff("a.py")])

    assert batch.reviewed_files == ["a.py"]
    assert batch.failed_files == []
    assert batch.comments == []


@pytest.mark.asyncio
async def test_review_batch_respects_concurrency_limit():
    in_flight = 0
    peak = 0

    class Counting:
        async def complete(self, messages, options):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return "[]"

    gateway = make_gateway({"openai": Counting()})
    batch = await CodeReviewer(gateway, max_concurrency=2).review_batch([diff(f"f{i}.py") for i in range(6)])

    assert len(batch.reviewed_files) == 6
    assert peak <= 2


@pytest.mark.asyncio
async def test_review_pr_empty_input():
    gateway = make_gateway({"openai": FakeBackend()})
    assert await CodeReviewer(gateway).review_pr([]) == []
