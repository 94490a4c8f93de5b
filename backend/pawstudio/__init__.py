"""
PawStudio backend: AI pet portrait generation with credit accounting.
"""
__version__ = "0.1.0"
