import pytest

from semindex.analysis.chunking import Chunker, ParserRegistry, count_tokens


class FakeNode:
    """Minimal stand-in for a tree-sitter node over a known source string."""

    def __init__(self, type_, source, start, end, children=(), fields=None):
        self.type = type_
        self.start_byte = len(source[:start].encode("utf-8"))
        self.end_byte = len(source[:end].encode("utf-8"))
        self.start_point = (source.count("\n", 0, start), 0)
        self.end_point = (source.count("\n", 0, end), 0)
        self.named_children = list(children)
        self._fields = fields or {}

    def child_by_field_name(self, name):
        return self._fields.get(name)


class FakeTree:
    def __init__(self, root):
        self.root_node = root


class FakeParser:
    def __init__(self, build):
        self._build = build
        self.calls = 0

    def parse(self, source: bytes):
        self.calls += 1
        return FakeTree(self._build(source.decode("utf-8")))


def span(source, text):
    start = source.index(text)
    return start, start + len(text)


def registry_for(language, parser):
    return ParserRegistry(loader=lambda name: parser if name == language else None)


PY_SOURCE = (
    "import os\n"
    "\n"
    "def first_function(argument):\n"
    "    return argument * 2 + len(os.sep)\n"
    "\n"
    "def tiny(): pass\n"
    "\n"
    "class Widget:\n"
    "    def render(self, value):\n"
    "        return f'<widget>{value}</widget>'\n"
)


def build_py_tree(src):
    f1_text = "def first_function(argument):\n    return argument * 2 + len(os.sep)"
    f1 = FakeNode("function_definition", src, *span(src, f1_text))
    f1_name = FakeNode("identifier", src, *span(src, "first_function"))
    f1._fields["name"] = f1_name

    tiny = FakeNode("function_definition", src, *span(src, "def tiny(): pass"))

    cls_text = src[src.index("class Widget"):].rstrip("\n")
    cls_name = FakeNode("identifier", src, *span(src, "Widget"))
    cls = FakeNode("class_definition", src, *span(src, cls_text), fields={"name": cls_name})

    imp = FakeNode("import_statement", src, *span(src, "import os"))
    return FakeNode("module", src, 0, len(src), children=[imp, f1, tiny, cls])


def test_boundary_nodes_become_chunks():
    parser = FakeParser(build_py_tree)
    chunker = Chunker(registry_for("python", parser), min_chars=20, max_chars=500)

    chunks = chunker.parse(PY_SOURCE, "python")

    assert [c.chunk_type for c in chunks] == ["function", "class"]
    assert chunks[0].symbol_name == "first_function"
    assert chunks[0].start_line == 3
    assert chunks[0].end_line == 4
    assert chunks[1].symbol_name == "Widget"
    assert chunks[1].start_line == 8
    assert chunks[1].end_line == 10
    # tiny() is below the minimum and is dropped
    assert all("tiny" not in c.code for c in chunks)


def test_oversized_node_descends_into_children():
    src = "class Big:\n" + "".join(
        f"    def method_{i}(self):\n        return {i} * 1000 + {i}\n" for i in range(4)
    )

    def build(source):
        methods = []
        for i in range(4):
            text = f"    def method_{i}(self):\n        return {i} * 1000 + {i}".lstrip()
            methods.append(FakeNode("function_definition", source, *span(source, text)))
        cls = FakeNode("class_definition", source, 0, len(source.rstrip("\n")), children=methods)
        return FakeNode("module", source, 0, len(source), children=[cls])

    chunker = Chunker(registry_for("python", FakeParser(build)), min_chars=10, max_chars=80)
    chunks = chunker.parse(src, "python")

    assert len(chunks) == 4
    assert all(c.chunk_type == "function" for c in chunks)
    assert all(len(c.code) <= 80 for c in chunks)
    assert [c.start_line for c in chunks] == [2, 4, 6, 8]


def test_oversized_node_without_inner_chunks_is_truncated_file_chunk():
    body = "x = 1\n" * 40
    src = "def huge():\n" + body

    def build(source):
        fn = FakeNode("function_definition", source, 0, len(source.rstrip("\n")))
        return FakeNode("module", source, 0, len(source), children=[fn])

    chunker = Chunker(registry_for("python", FakeParser(build)), min_chars=10, max_chars=100)
    chunks = chunker.parse(src, "python")

    assert len(chunks) == 1
    assert chunks[0].chunk_type == "file"
    assert len(chunks[0].code) == 100
    assert chunks[0].start_line == 1
    assert chunks[0].end_line == 41


def test_nested_oversized_fallback_counts_for_ancestor():
    inner_body = "y = 2\n" * 30
    src = "class Outer:\n    def inner():\n" + inner_body

    def build(source):
        inner_start = source.index("def inner")
        inner = FakeNode("function_definition", source, inner_start, len(source.rstrip("\n")))
        outer = FakeNode("class_definition", source, 0, len(source.rstrip("\n")), children=[inner])
        return FakeNode("module", source, 0, len(source), children=[outer])

    chunker = Chunker(registry_for("python", FakeParser(build)), min_chars=10, max_chars=60)
    chunks = chunker.parse(src, "python")

    # Only the innermost oversized node produces a fallback
    assert len(chunks) == 1
    assert chunks[0].chunk_type == "file"
    assert chunks[0].start_line == 2


def test_depth_guard_stops_descent():
    src = "a" * 10 + "\n" + "def deep_function_name(): return 12345\n"

    def build(source):
        fn = FakeNode("function_definition", source, *span(source, "def deep_function_name(): return 12345"))
        node = fn
        for _ in range(20):
            node = FakeNode("block", source, 0, len(source), children=[node])
        return FakeNode("module", source, 0, len(source), children=[node])

    deep = Chunker(registry_for("python", FakeParser(build)), min_chars=10, max_chars=200, max_depth=5)
    shallow = Chunker(registry_for("python", FakeParser(build)), min_chars=10, max_chars=200, max_depth=512)

    # Guarded walk finds nothing and falls back to line chunks
    assert [c.chunk_type for c in deep.parse(src, "python")] == ["block"]
    assert [c.chunk_type for c in shallow.parse(src, "python")] == ["function"]


def test_parser_exception_falls_back_to_lines():
    class Exploding:
        def parse(self, source):
            raise RuntimeError("grammar crashed")

    chunker = Chunker(registry_for("python", Exploding()), min_chars=5, max_chars=100)
    chunks = chunker.parse("print('hello world')\n", "python")
    assert len(chunks) == 1
    assert chunks[0].code.startswith("print")


def test_registry_caches_unsupported_languages():
    attempts = []

    def loader(name):
        attempts.append(name)
        raise LookupError(name)

    registry = ParserRegistry(loader=loader)
    assert registry.get("python") is None
    assert registry.get("python") is None
    assert registry.get("markdown") is None
    assert attempts == ["python"]
    assert not registry.is_supported("python")


def test_unsupported_language_uses_line_chunks():
    registry = ParserRegistry(loader=lambda name: pytest.fail("no grammar lookup expected"))
    chunker = Chunker(registry, min_chars=10, max_chars=60)
    text = "\n".join(f"line number {i} of the document" for i in range(10))

    chunks = chunker.parse(text, "markdown")

    assert len(chunks) > 1
    assert all(c.chunk_type == "block" for c in chunks)
    assert all(10 <= len(c.code) <= 60 for c in chunks)
    assert chunks[0].start_line == 1
    # blocks are contiguous
    for prev, cur in zip(chunks, chunks[1:]):
        assert cur.start_line == prev.end_line + 1


def test_line_chunks_tiny_file_becomes_file_chunk():
    chunker = Chunker(ParserRegistry(loader=lambda name: None), min_chars=50, max_chars=8000)
    chunks = chunker.parse("x = 1\n", "python")
    assert len(chunks) == 1
    assert chunks[0].chunk_type == "file"
    assert chunks[0].code == "x = 1\n"
    assert (chunks[0].start_line, chunks[0].end_line) == (1, 2)


def test_blank_content_yields_nothing():
    chunker = Chunker(ParserRegistry(loader=lambda name: None))
    assert chunker.parse("", "markdown") == []
    assert chunker.parse("\n   \n\t\n", "markdown") == []


def test_long_single_line_is_one_truncated_chunk():
    chunker = Chunker(ParserRegistry(loader=lambda name: None), min_chars=10, max_chars=100)
    text = "short header line here\n" + "z" * 250 + "\nfooter line that is long enough\n"

    chunks = chunker.parse(text, "json")

    assert all(len(c.code) <= 100 for c in chunks)
    long_line = [c for c in chunks if c.start_line == 2]
    assert len(long_line) == 1
    assert long_line[0].code == "z" * 100
    assert long_line[0].end_line == 2
    assert long_line[0].chunk_type == "file"


def test_line_chunk_spans_are_unique():
    chunker = Chunker(ParserRegistry(loader=lambda name: None), min_chars=10, max_chars=100)
    text = "x" * 350 + "\n" + "y" * 120 + "\n" + "\n".join(f"row {i} of the table" for i in range(20))

    chunks = chunker.parse(text, "markdown")
    spans = [(c.start_line, c.end_line) for c in chunks]

    assert len(set(spans)) == len(spans)
    assert spans[:2] == [(1, 1), (2, 2)]


def test_invalid_bounds_rejected():
    with pytest.raises(ValueError):
        Chunker(ParserRegistry(loader=lambda name: None), min_chars=100, max_chars=10)


def test_count_tokens():
    assert count_tokens("def add(a, b): return a + b") >= 1


def test_real_python_grammar_when_available():
    registry = ParserRegistry()
    if registry.get("python") is None:
        pytest.skip("python grammar not available")

    chunker = Chunker(registry, min_chars=20, max_chars=8000)
    chunks = chunker.parse(PY_SOURCE, "python")

    names = {c.symbol_name for c in chunks}
    assert "first_function" in names
    assert "Widget" in names
    assert all(c.chunk_type in {"function", "class"} for c in chunks)
