"""flowmap: map code-flow comments to stable, remappable annotations."""

__version__ = "0.1.0"
