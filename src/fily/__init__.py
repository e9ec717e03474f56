"""fily finds duplicate files and similar images, moves files and checks image formats."""

__version__ = "0.1.0"
