"""Tests for the structural symbol index."""

import pytest

from flowmap_cli.models import SymbolIndex
from flowmap_cli.symbols import (
    SymbolIndexer,
    build_symbol_index,
    find_symbol_range,
    infer_symbol_at_position,
    language_for_path,
)

PYTHON_SOURCE = '''import functools


class Cart:
    def __init__(self):
        self.items = []

    @functools.lru_cache()
    def total(self):
        helper = lambda x: x
        return sum(self.items)


def checkout(cart):
    def inner():
        return cart
    return inner()
'''

JS_SOURCE = '''class Cart {
  constructor() {
    this.items = [];
  }

  get size() {
    return this.items.length;
  }

  add(item) {
    const log = () => {
      console.log(item);
    };
    this.items.push(item);
  }
}

function checkout(cart) {
  return cart.size;
}
'''

TS_SOURCE = '''abstract class Repo<T> {
  abstract find(id: string): T;

  save(item: T): void {
    console.log(item);
  }
}
'''


def _ranges(index: SymbolIndex):
    return {path: (r.start_line, r.end_line) for path, r in index.by_path.items()}


def _assert_nested_ranges_contained(index: SymbolIndex):
    for path, symbol in index.by_path.items():
        if "." not in path:
            continue
        parent = index.by_path[path.rsplit(".", 1)[0]]
        assert parent.start_line <= symbol.start_line
        assert symbol.end_line <= parent.end_line


class TestLanguageDispatch:
    """File extension -> grammar."""

    @pytest.mark.parametrize("path,language", [
        ("a.py", "python"),
        ("web/app.jsx", "javascript"),
        ("lib/x.mjs", "javascript"),
        ("src/api.ts", "typescript"),
        ("ui/View.tsx", "tsx"),
        ("README.md", None),
    ])
    def test_language_for_path(self, path, language):
        assert language_for_path(path) == language

    def test_unsupported_extension_gives_empty_index(self):
        assert len(build_symbol_index("notes.txt", "def f():\n    pass\n")) == 0


class TestPythonSymbols:
    """Python indexing (tree-sitter, or ast when the grammar is missing)."""

    def test_paths_and_ranges(self):
        ranges = _ranges(build_symbol_index("cart.py", PYTHON_SOURCE))
        assert ranges == {
            "Cart": (4, 11),
            "Cart.__init__": (5, 6),
            "Cart.total": (8, 11),
            "checkout": (14, 17),
            "checkout.inner": (15, 16),
        }

    def test_decorated_range_starts_at_decorator(self):
        index = build_symbol_index("cart.py", PYTHON_SOURCE)
        total = index.find("Cart.total")
        assert total.start_line == 8
        assert total.node_type == "function_definition"

    def test_nested_ranges_are_contained(self):
        _assert_nested_ranges_contained(build_symbol_index("cart.py", PYTHON_SOURCE))

    def test_innermost_symbol_wins(self):
        assert infer_symbol_at_position("cart.py", PYTHON_SOURCE, 10).path == "Cart.total"
        assert infer_symbol_at_position("cart.py", PYTHON_SOURCE, 16).path == "checkout.inner"
        assert infer_symbol_at_position("cart.py", PYTHON_SOURCE, 6).path == "Cart.__init__"

    def test_module_level_line_has_no_symbol(self):
        assert infer_symbol_at_position("cart.py", PYTHON_SOURCE, 1) is None

    def test_broken_source_never_raises(self):
        index = build_symbol_index("broken.py", "def (:\n  ]]]\n")
        assert isinstance(index, SymbolIndex)

    def test_ast_fallback_matches(self, monkeypatch):
        monkeypatch.setattr(SymbolIndexer, "_get_parser", lambda self, language: None)
        ranges = _ranges(SymbolIndexer().build("cart.py", PYTHON_SOURCE))
        assert ranges["Cart.total"] == (8, 11)
        assert ranges["checkout.inner"] == (15, 16)
        assert set(ranges) == {"Cart", "Cart.__init__", "Cart.total", "checkout", "checkout.inner"}

    def test_ast_fallback_broken_source(self, monkeypatch):
        monkeypatch.setattr(SymbolIndexer, "_get_parser", lambda self, language: None)
        assert len(SymbolIndexer().build("broken.py", "def (:\n")) == 0


class TestJavaScriptSymbols:
    """JS/TS indexing; skipped when the grammar packages are not installed."""

    def test_classes_methods_and_accessors(self):
        pytest.importorskip("tree_sitter")
        pytest.importorskip("tree_sitter_javascript")
        ranges = _ranges(build_symbol_index("cart.js", JS_SOURCE))
        assert ranges == {
            "Cart": (1, 16),
            "Cart.constructor": (2, 4),
            "Cart.size": (6, 8),
            "Cart.add": (10, 15),
            "checkout": (18, 20),
        }

    def test_arrow_function_does_not_extend_path(self):
        pytest.importorskip("tree_sitter")
        pytest.importorskip("tree_sitter_javascript")
        assert infer_symbol_at_position("cart.js", JS_SOURCE, 12).path == "Cart.add"

    def test_typescript_abstract_class(self):
        pytest.importorskip("tree_sitter")
        pytest.importorskip("tree_sitter_typescript")
        index = build_symbol_index("repo.ts", TS_SOURCE)
        assert index.find("Repo").node_type == "abstract_class_declaration"
        assert (index.find("Repo.save").start_line, index.find("Repo.save").end_line) == (4, 6)
        _assert_nested_ranges_contained(index)


class TestFindSymbolRange:
    """Lookup helper used by candidate search."""

    def test_tolerates_missing_inputs(self):
        index = build_symbol_index("cart.py", PYTHON_SOURCE)
        assert find_symbol_range(None, index) is None
        assert find_symbol_range("Cart", None) is None
        assert find_symbol_range("Nope", index) is None

    def test_found(self):
        index = build_symbol_index("cart.py", PYTHON_SOURCE)
        assert find_symbol_range("checkout", index).start_line == 14
