from .compiler import CompiledFilter, combine, compile_filter
from .expression import evaluate, id_equals, id_in, match_no_highlight, match_nothing
from .types import FilterSpec

__all__ = [
    "CompiledFilter",
    "FilterSpec",
    "combine",
    "compile_filter",
    "evaluate",
    "id_equals",
    "id_in",
    "match_no_highlight",
    "match_nothing",
]
