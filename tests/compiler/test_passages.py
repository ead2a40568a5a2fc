"""Tests for split_passages and header parsing."""

from threadline.compiler import DiagnosticLog, split_passages


def test_split_in_script_order():
    text = ":: First [Jamie]\nhello\n\n:: Second\nworld\n"
    log = DiagnosticLog()
    passages = split_passages(text, log)
    assert [p.title for p in passages] == ["First", "Second"]
    assert passages[0].tags == ["Jamie"]
    assert passages[0].content == "hello"
    assert passages[1].tags == []
    assert passages[1].content == "world"
    assert log.errors == []


def test_header_line_numbers():
    text = "\n:: A [x]\none\ntwo\n:: B [y]\nthree"
    passages = split_passages(text, DiagnosticLog())
    assert passages[0].line == 2
    assert passages[1].line == 5


def test_text_before_first_header_is_ignored():
    passages = split_passages("stray line\n:: A [x]\nbody", DiagnosticLog())
    assert len(passages) == 1
    assert passages[0].content == "body"


def test_content_keeps_inner_blank_lines():
    passages = split_passages(":: A [x]\n\nline one\n\nline two   \n\n", DiagnosticLog())
    assert passages[0].content == "line one\n\nline two"


def test_multiple_tags():
    passages = split_passages(":: Jamie-Round-1 [Jamie initial_contact]\nHi", DiagnosticLog())
    assert passages[0].tags == ["Jamie", "initial_contact"]


def test_layout_metadata():
    header = ':: Jamie-Round-1 [Jamie] {"position":"575,375","size":"100,200"}'
    passages = split_passages(header + "\nHi", DiagnosticLog())
    assert passages[0].position.x == 575
    assert passages[0].position.y == 375
    assert passages[0].size.w == 100
    assert passages[0].size.h == 200


def test_bad_metadata_is_a_warning():
    log = DiagnosticLog()
    passages = split_passages(":: A [x] {oops\nbody", log)
    assert passages[0].title == "A"
    assert passages[0].position is None
    assert log.errors == []
    assert [w.kind for w in log.warnings] == ["metadata"]
    assert log.warnings[0].line == 1


def test_malformed_position_is_ignored():
    passages = split_passages(':: A [x] {"position":"left"}\nbody', DiagnosticLog())
    assert passages[0].position is None


def test_empty_title_is_an_error_with_placeholder():
    """A header with no title swallows its content under a placeholder."""
    log = DiagnosticLog()
    passages = split_passages("::\nlost text\n:: B [y]\nkept", log)
    assert [p.title for p in passages] == ["Unknown", "B"]
    assert passages[0].content == "lost text"
    assert passages[1].content == "kept"
    assert len(log.errors) == 1
    assert log.errors[0].kind == "syntax"
    assert log.errors[0].line == 1
