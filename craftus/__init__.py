"""
Craftus - Generative craft breakdowns.

Turns a natural-language description of a craft into a reference image,
then dissects it into materials and illustrated build steps using Gemini.
"""

__version__ = "0.1.0"
__author__ = "Craftus Team"
