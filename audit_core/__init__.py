"""Core (UI-agnostic) audit log viewer logic.

This package contains:
- configuration and logging setup
- document / blob stores and the file library (upload, list, delete)
- CSV loading (text -> pandas)
- filter engine and pagination / selection reducers
- log entity normalizer, structured differ and value renderer
- timeline grouping and chart helpers (Altair -> Vega-Lite spec dict)
"""
