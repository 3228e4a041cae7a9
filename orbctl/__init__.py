"""Building blocks for CI tooling: settings, orb references, YAML file trees, local builds and update checks."""

__version__ = "0.1.0"