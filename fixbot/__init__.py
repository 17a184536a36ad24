"""fixbot checks GitHub repositories for Python source problems and commits fixes."""

__version__ = "0.1.0"
