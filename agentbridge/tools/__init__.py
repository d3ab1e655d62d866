from .built_in import BuiltInToolProvider, LookupUserArgs

__all__ = ["BuiltInToolProvider", "LookupUserArgs"]
