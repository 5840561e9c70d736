# Configuration file for the Sphinx documentation builder.
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from acmesync import __version__  # noqa: E402

project = 'acmesync'
copyright = '2026, acmesync'
author = 'acmesync'
release = __version__

extensions = ['sphinx.ext.autodoc', 'sphinx.ext.napoleon']
autodoc_mock_imports = ['acmeow', 'kubernetes', 'pypgkit', 'psycopg', 'configkit']
napoleon_numpy_docstring = True

templates_path = ['_templates']
exclude_patterns = ['_build', 'Thumbs.db', '.DS_Store']

html_theme = 'sphinx_rtd_theme'
html_static_path = ['_static']
