"""Main entry point for Cachewire CLI.

Usage:
    python -m cachewire --help
    cachewire --help  # If installed via pip/uv
"""

from cachewire.cli import main

if __name__ == "__main__":
    main()
