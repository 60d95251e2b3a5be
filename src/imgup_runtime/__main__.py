"""Allow `python -m imgup_runtime`."""

from .cli import main

if __name__ == "__main__":
    main()
