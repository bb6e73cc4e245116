"""Shiori: shared link boards with previews and emoji reactions."""
