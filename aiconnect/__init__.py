# aiconnect: multiplex a terminal across interactive AI coding tools

__version__ = "0.3.0"


def main():
    """Entry point for the aic CLI command."""
    from aiconnect.cli import app

    app()
