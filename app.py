"""WSGI entry point for the game library duplicate resolution service."""
import logging

from flask import Flask

from web.app_factory import create_app

logger = logging.getLogger(__name__)

app = create_app(Flask(__name__))


if __name__ == '__main__':
    app.run(debug=True)
