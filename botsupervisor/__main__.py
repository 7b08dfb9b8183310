"""
Entry point for running the supervisor via `python -m botsupervisor`.
"""

from .main import app


def main():
    """Run the supervisor command line."""
    app(prog_name="botsupervisor")


if __name__ == "__main__":
    main()
