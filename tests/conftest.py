import pytest

from zensplit.app import create_app


class TestConfig:
    CORS_ORIGINS = ["*"]
    LOG_LEVEL = "DEBUG"
    OTP_TTL_SECONDS = 600
    OTP_LENGTH = 6
    DEBUG = False
    PORT = 5000


@pytest.fixture
def make_app():
    def factory(**kwargs):
        app = create_app(TestConfig, **kwargs)
        app.config["TESTING"] = True
        return app

    return factory


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()
