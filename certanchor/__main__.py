"""
Module entry point for: python -m certanchor

Allows running the engine directly as a module:
    python -m certanchor fingerprint <pdf_path>
    python -m certanchor register <pdf_path> [options]
    python -m certanchor verify <pdf_path|fingerprint> [options]
    python -m certanchor serve [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
