"""Allow ``python -m gitlab_provider``."""

from gitlab_provider.cli.app import app

if __name__ == "__main__":
    app()
