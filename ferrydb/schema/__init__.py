from .ir import ColumnIR, ForeignKeyIR, IndexIR, TableIndexesIR, TableIR, TypeIR
from .render import DdlRenderer, SqlAlchemyRenderer, register_renderer, renderer_for

__all__ = [
    "TypeIR",
    "ColumnIR",
    "TableIR",
    "IndexIR",
    "ForeignKeyIR",
    "TableIndexesIR",
    "DdlRenderer",
    "SqlAlchemyRenderer",
    "register_renderer",
    "renderer_for",
]
