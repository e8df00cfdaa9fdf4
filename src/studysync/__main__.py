"""Allow `python -m studysync`."""

from studysync.cli.commands import app

if __name__ == "__main__":
    app()
