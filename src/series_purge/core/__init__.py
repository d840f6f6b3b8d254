"""Series purge core package."""

from .purger import SeriesPurger

__all__ = ["SeriesPurger"]
