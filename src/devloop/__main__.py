"""Allow running devloop as ``python -m devloop``."""

from devloop import main

if __name__ == "__main__":
    main()
