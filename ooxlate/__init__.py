# ooxlate/__init__.py
"""
ooxlate - translate the text of .xlsx and .docx files

Rewrites the text nodes of OOXML documents through an OpenAI-compatible LLM
and leaves every other part of the archive untouched.
"""

from pathlib import Path


def _get_version() -> str:
    """
    Read the version from pyproject.toml so a source checkout reports the
    version being worked on without a reinstall.

    Returns:
        str: Version string (e.g. "0.3.0")
    """
    import tomllib

    pyproject_path = Path(__file__).parent.parent / "pyproject.toml"
    if pyproject_path.exists():
        try:
            with open(pyproject_path, "rb") as f:
                data = tomllib.load(f)
            return data.get("project", {}).get("version", "0.0.0")
        except (OSError, tomllib.TOMLDecodeError):
            pass

    # Fallback for installed copies without pyproject.toml
    return "0.3.0"


__version__ = _get_version()
__app_name__ = "ooxlate"
