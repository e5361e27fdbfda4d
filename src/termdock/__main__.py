"""Module entrypoint for `python -m termdock`."""

from termdock.cli import run

if __name__ == "__main__":
    raise SystemExit(run())
