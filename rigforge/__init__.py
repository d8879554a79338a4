"""rigforge — decompose a still image into rigged, atlas-packed parts."""

__version__ = "0.1.0"
