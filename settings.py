import os

import sys
from django.conf import settings


def configure_settings():
    """
    Configures settings for manage.py and for run_tests.py.
    """
    if not settings.configured:
        # Determine the database settings depending on if a test_db var is set in CI mode or not
        test_db = os.environ.get('DB', None)
        if test_db is None:
            db_config = {
                'ENGINE': 'django.db.backends.postgresql',
                'NAME': 'sync_utils',
                'USER': 'sync_utils',
                'PASSWORD': 'sync_utils',
                'HOST': 'db'
            }
        elif test_db == 'postgres':
            db_config = {
                'ENGINE': 'django.db.backends.postgresql',
                'USER': 'postgres',
                'NAME': 'sync_utils',
            }
        elif test_db == 'sqlite':
            db_config = {
                'ENGINE': 'django.db.backends.sqlite3',
                'NAME': 'sync_utils.db',
            }
        else:
            raise RuntimeError('Unsupported test DB {0}'.format(test_db))

        settings.configure(
            DATABASES={
                'default': db_config,
            },
            INSTALLED_APPS=(
                'django.contrib.auth',
                'django.contrib.contenttypes',
                'sync_utils.distributed_lock',
            ),
            DEFAULT_AUTO_FIELD='django.db.models.AutoField',
            # Lock tests run inside TestCase transactions, the autocommit check is covered on its own
            DISTRIBUTED_LOCK_REQUIRE_AUTOCOMMIT=False,
            DISTRIBUTED_LOCK_DEFAULT_TTL=60,
            DISTRIBUTED_LOCK_CLEANUP_GRACE_PERIOD=0,
            LOGGING={
                'version': 1,
                'disable_existing_loggers': False,
                'formatters': {
                    'standard': {
                        'format': '[%(asctime)s %(levelname)s] %(name)s:%(lineno)d \'%(message)s\'',
                    }
                },
                'handlers': {
                    'console': {
                        'level': 'DEBUG',
                        'class': 'logging.StreamHandler',
                        'stream': sys.stdout,
                        'formatter': 'standard'
                    }
                },
                'loggers': {
                    'sync_utils': {
                        'handlers': ['console'],
                        'level': os.environ.get('SYNC_UTILS_LOG_LEVEL', 'WARNING'),
                        'propagate': True
                    },
                }
            },
            TIME_ZONE='UTC',
            USE_TZ=False,
        )
