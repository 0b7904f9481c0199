from expense_tracker.api import create_api_app
from expense_tracker.config import load_settings
from expense_tracker.logging import configure_logging


def create_app():
    settings = load_settings()
    configure_logging(settings.log_level)
    return create_api_app(settings)


app = create_app()
