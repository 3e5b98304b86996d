"""
PDF export for MangaForge story packages.
"""

from .builder import PAGE_SIZES, PageLayoutConfig, StorybookPDFBuilder

__all__ = ["PAGE_SIZES", "PageLayoutConfig", "StorybookPDFBuilder"]
