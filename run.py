"""Run the bot supervisor."""

from botsupervisor.main import app

if __name__ == "__main__":
    app(prog_name="botsupervisor")
