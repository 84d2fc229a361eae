from __future__ import annotations

import logging.config

LOG_FORMAT = '%(asctime)s %(levelname)s %(name)s: %(message)s'


def configure_logging(level: str = 'INFO') -> None:
    logging.config.dictConfig(
        {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'default': {'format': LOG_FORMAT},
            },
            'handlers': {
                'console': {
                    'class': 'logging.StreamHandler',
                    'formatter': 'default',
                },
            },
            'root': {
                'handlers': ['console'],
                'level': level.upper(),
            },
            'loggers': {
                # Keep request/SQL chatter out of the inventory logs unless asked for.
                'sqlalchemy.engine': {'level': 'WARNING'},
                'urllib3': {'level': 'WARNING'},
            },
        }
    )
