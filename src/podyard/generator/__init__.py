"""Generators for the build project and per-target support files."""

from .acknowledgements import Acknowledgements
from .documentation import DocsGenerator, MarkdownDocsGenerator
from .dummy_source import DummySource
from .project import BuildProject
from .target_installer import Library, TargetInstaller

__all__ = [
    "Acknowledgements",
    "BuildProject",
    "DocsGenerator",
    "DummySource",
    "Library",
    "MarkdownDocsGenerator",
    "TargetInstaller",
]
