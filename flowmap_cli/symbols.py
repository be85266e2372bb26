"""Structural symbol index built with Tree-sitter.

Records every named function, method, constructor, accessor and class of a
file as a :class:`~flowmap_cli.models.SymbolRange` keyed by its dotted
ancestor path (``Class.method``).  Anonymous constructs (lambdas, arrow
functions, unnamed expressions) never extend the path, but whatever they
contain is still visited.

Indexing never raises: unsupported extensions, missing grammars and broken
sources all produce an empty index, and callers fall back to whole-file
search.  Python files fall back to the built-in ``ast`` module when the
Tree-sitter grammar is unavailable.
"""

from __future__ import annotations

import ast
import importlib
import logging
from pathlib import PurePosixPath
from typing import Any, Dict, Optional, Tuple

from .models import SymbolIndex, SymbolRange

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Language <-> file-extension mapping
# ---------------------------------------------------------------------------
LANGUAGE_MAP: Dict[str, str] = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
}

# language -> (grammar module, function returning the Language capsule)
_GRAMMAR_MODULES: Dict[str, Tuple[str, str]] = {
    "python": ("tree_sitter_python", "language"),
    "javascript": ("tree_sitter_javascript", "language"),
    "typescript": ("tree_sitter_typescript", "language_typescript"),
    "tsx": ("tree_sitter_typescript", "language_tsx"),
}

# Declaration node types recorded per grammar family.
_PYTHON_DECLARATIONS = {"function_definition", "class_definition"}
_JS_DECLARATIONS = {
    "function_declaration",
    "generator_function_declaration",
    "class_declaration",
    "abstract_class_declaration",
    "method_definition",
}
_JS_NAME_TYPES = {
    "identifier",
    "type_identifier",
    "property_identifier",
    "private_property_identifier",
}


def language_for_path(file_path: str) -> Optional[str]:
    return LANGUAGE_MAP.get(PurePosixPath(file_path.replace("\\", "/")).suffix.lower())


class SymbolIndexer:
    """Builds :class:`SymbolIndex` objects, caching one parser per language."""

    def __init__(self) -> None:
        self._parsers: Dict[str, Any] = {}
        self._unavailable: set = set()

    # ------------------------------------------------------------------
    # Parser loading
    # ------------------------------------------------------------------

    def _get_parser(self, language: str) -> Optional[Any]:
        if language in self._parsers:
            return self._parsers[language]
        if language in self._unavailable:
            return None

        mod_name, func_name = _GRAMMAR_MODULES[language]
        try:
            from tree_sitter import Language, Parser as TSParser

            mod = importlib.import_module(mod_name)
            parser = TSParser(Language(getattr(mod, func_name)()))
        except ImportError:
            logger.warning(
                "Grammar package '%s' not installed for language '%s'. "
                "Install with: pip install %s",
                mod_name, language, mod_name.replace("_", "-"),
            )
            self._unavailable.add(language)
            return None
        except Exception as exc:
            logger.warning("Could not load tree-sitter grammar for %s: %s", language, exc)
            self._unavailable.add(language)
            return None

        self._parsers[language] = parser
        logger.debug("Loaded tree-sitter parser for %s", language)
        return parser

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build(self, file_path: str, content: str) -> SymbolIndex:
        language = language_for_path(file_path)
        if language is None:
            return SymbolIndex()

        parser = self._get_parser(language)
        if parser is None:
            if language == "python":
                return _build_python_ast_index(file_path, content)
            return SymbolIndex()

        try:
            tree = parser.parse(content.encode("utf-8"))
            index = SymbolIndex()
            self._walk(tree.root_node, (), language, index)
            return index
        except Exception as exc:
            logger.debug("Symbol indexing failed for %s: %s", file_path, exc)
            return SymbolIndex()

    # ------------------------------------------------------------------
    # Tree walk
    # ------------------------------------------------------------------

    def _walk(
        self,
        ts_node: Any,
        stack: Tuple[str, ...],
        language: str,
        index: SymbolIndex,
    ) -> None:
        for child in ts_node.children:
            declaration = child
            # Unwrap @decorated_definition -> inner function/class
            if child.type == "decorated_definition":
                inner = child.child_by_field_name("definition")
                if inner is not None:
                    declaration = inner

            name = _declaration_name(declaration, language)
            if name is None:
                self._walk(child, stack, language, index)
                continue

            path_parts = stack + (name,)
            path = ".".join(path_parts)
            index.by_path[path] = SymbolRange(
                path=path,
                start_line=child.start_point[0] + 1,
                end_line=child.end_point[0] + 1,
                node_type=declaration.type,
            )
            self._walk(declaration, path_parts, language, index)


def _declaration_name(node: Any, language: str) -> Optional[str]:
    if language == "python":
        if node.type not in _PYTHON_DECLARATIONS:
            return None
        name_node = node.child_by_field_name("name")
        return name_node.text.decode("utf-8") if name_node is not None else None

    if node.type not in _JS_DECLARATIONS:
        return None
    name_node = node.child_by_field_name("name")
    if name_node is None or name_node.type not in _JS_NAME_TYPES:
        return None
    return name_node.text.decode("utf-8")


# ===================================================================
# AST fallback (Python only, when tree-sitter is not installed)
# ===================================================================

_AST_NODE_TYPES = {
    ast.FunctionDef: "function_definition",
    ast.AsyncFunctionDef: "function_definition",
    ast.ClassDef: "class_definition",
}


def _build_python_ast_index(file_path: str, content: str) -> SymbolIndex:
    try:
        tree = ast.parse(content)
    except (SyntaxError, ValueError) as exc:
        logger.debug("AST parse failed for %s: %s", file_path, exc)
        return SymbolIndex()

    index = SymbolIndex()
    _visit_ast(tree, (), index)
    return index


def _visit_ast(node: ast.AST, stack: Tuple[str, ...], index: SymbolIndex) -> None:
    for child in ast.iter_child_nodes(node):
        node_type = _AST_NODE_TYPES.get(type(child))
        if node_type is None:
            _visit_ast(child, stack, index)
            continue

        path_parts = stack + (child.name,)
        path = ".".join(path_parts)
        start = min([d.lineno for d in child.decorator_list] + [child.lineno])
        index.by_path[path] = SymbolRange(
            path=path,
            start_line=start,
            end_line=child.end_lineno or child.lineno,
            node_type=node_type,
        )
        _visit_ast(child, path_parts, index)


_default_indexer: Optional[SymbolIndexer] = None


def _indexer() -> SymbolIndexer:
    global _default_indexer
    if _default_indexer is None:
        _default_indexer = SymbolIndexer()
    return _default_indexer


def build_symbol_index(file_path: str, content: str) -> SymbolIndex:
    """Index the named declarations of *content*; empty when unsupported."""
    return _indexer().build(file_path, content)


def infer_symbol_at_position(file_path: str, content: str, line: int) -> Optional[SymbolRange]:
    """Return the innermost named symbol containing *line*, if any."""
    return build_symbol_index(file_path, content).symbol_at(line)


def find_symbol_range(
    symbol_path: Optional[str],
    index: Optional[SymbolIndex],
) -> Optional[SymbolRange]:
    if not symbol_path or index is None:
        return None
    return index.find(symbol_path)
