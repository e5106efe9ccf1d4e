"""Allow ``python -m TerraMirror.ProviderSync``."""

from .cli import app

if __name__ == "__main__":  # pragma: no cover
    app(prog_name="tfmirror")
