"""Core (UI-agnostic) retail dashboard logic.

This package contains:
- entity records and the sale kind discriminator
- date-range resolution and filter normalization
- data loading (CSV/JSON -> pandas) and range filtering
- panel compute functions (JSON-serializable payloads)
- the API endpoint registry
- chart helpers (Altair -> Vega-Lite spec dict)
"""
