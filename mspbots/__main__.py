"""
Entry point for running mspbots as a module: python -m mspbots
"""

from mspbots.cli.commands import app

if __name__ == "__main__":
    app()
