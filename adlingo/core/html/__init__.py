"""
HTML handling: extraction into translation units, reinsertion of translated
values and markup-safe text patching.
"""

from .extractor import ExtractionResult, StructuralExtractor, extract_units
from .patcher import PatchResult, SafePatcher, apply_corrections
from .reinsertion import ReinsertionEngine, reinsert

__all__ = [
    'ExtractionResult',
    'StructuralExtractor',
    'extract_units',
    'PatchResult',
    'SafePatcher',
    'apply_corrections',
    'ReinsertionEngine',
    'reinsert',
]
