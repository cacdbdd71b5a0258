"""Page-object helpers built on the executor."""

from .base_page import BasePage

__all__ = ["BasePage"]
