"""YAML rule files shipped with depot-extract; loaded via ``importlib.resources``."""
