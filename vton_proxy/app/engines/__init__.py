"""
Engine adapters for the try-on pipeline.

Each adapter turns a pair of staged images into result image bytes. The
hosted IDM-VTON Space is the only backend today.
"""

from .idm_vton import EngineConfig, IdmVtonEngine, extract_result_reference

__all__ = ["EngineConfig", "IdmVtonEngine", "extract_result_reference"]
