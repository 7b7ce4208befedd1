"""SSH key enforcer: keeps a source-hosting platform's SSH keys under governance."""

__version__ = "1.0.0"
