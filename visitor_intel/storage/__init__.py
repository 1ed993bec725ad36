# Shared state: alias overrides and the visit log
from .alias_table import AliasTable
from .visit_store import VisitStore
