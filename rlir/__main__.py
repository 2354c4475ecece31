"""Entry point for ``python -m rlir`` and the ``rlcheck`` console script."""

from .main import main

if __name__ == "__main__":
    raise SystemExit(main())
