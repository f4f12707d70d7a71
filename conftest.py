import os

os.environ.setdefault('DB', 'sqlite')

from settings import configure_settings  # noqa: E402

configure_settings()
