from beacon.core.calendar import on_call_index, on_call_member
from beacon.core.formatters import register_formatter, select_formatter

__all__ = ["on_call_index", "on_call_member", "register_formatter", "select_formatter"]
