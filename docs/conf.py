# Sphinx configuration for the tsr-explorer API reference.

import os
import sys

# Add the source directory to the path so autodoc can find the package
sys.path.insert(0, os.path.abspath("../src"))

# -- Project information -----------------------------------------------------

project = "tsr-explorer"
author = "tsr-explorer developers"
release = "0.1.0"

# -- General configuration ---------------------------------------------------

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.autosummary",
    "sphinx.ext.napoleon",
    "sphinx.ext.intersphinx",
]

exclude_patterns = ["_build"]

# -- Options for autodoc -----------------------------------------------------

autodoc_default_options = {
    "members": True,
    "member-order": "bysource",
}
autodoc_typehints = "description"
autosummary_generate = True

autodoc_mock_imports = ["edgepython"]

# -- Options for Napoleon ----------------------------------------------------

napoleon_google_docstring = False
napoleon_numpy_docstring = True
napoleon_attr_annotations = True

# -- Options for intersphinx -------------------------------------------------

intersphinx_mapping = {
    "python": ("https://docs.python.org/3", None),
    "numpy": ("https://numpy.org/doc/stable/", None),
    "pandas": ("https://pandas.pydata.org/docs/", None),
    "matplotlib": ("https://matplotlib.org/stable/", None),
    "bioframe": ("https://bioframe.readthedocs.io/en/latest/", None),
    "biopython": ("https://biopython.org/docs/latest/", None),
}

# -- Options for HTML output -------------------------------------------------

html_theme = "alabaster"
