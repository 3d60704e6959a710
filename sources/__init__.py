"""YAML source definitions for docscope crawls."""

from .loader import SourceConfig, SourceLoader

__all__ = ['SourceConfig', 'SourceLoader']
