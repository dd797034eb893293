import os

from dotenv import load_dotenv

import crudrepo

MONGO_DB = None
MONGO_USERNAME = None
MONGO_PASSWORD = None
MONGO_HOST = None
MONGO_PORT = None
MONGO_TLS = False

# store ceiling for a single batched write, also the default page size
BATCH_SIZE = 500
MAX_ALLOWED_IN_IN_CLAUSE = 10

MAX_OPTIMISTIC_RETRIES = 16
WORKER_COUNT = 8


def load_config(env_file: str = None):
    """
    Set crudrepo global variables according to dotenv environment variables.

    Args:
        env_file (str, optional): Path to the dotenv file. Defaults to None.
    """
    load_dotenv(env_file, override=True)

    # environment variables to connect to mongodb
    crudrepo.settings.MONGO_DB = os.getenv("MONGO_DB")
    crudrepo.settings.MONGO_USERNAME = os.getenv("MONGO_USERNAME")
    crudrepo.settings.MONGO_PASSWORD = os.getenv("MONGO_PASSWORD")
    crudrepo.settings.MONGO_HOST = os.getenv("MONGO_HOST")
    crudrepo.settings.MONGO_PORT = int(os.getenv("MONGO_PORT", 27017))
    crudrepo.settings.MONGO_TLS = os.getenv("MONGO_TLS", "false").lower() in (
        "1",
        "true",
        "yes",
    )

    # repository tuning
    crudrepo.settings.BATCH_SIZE = int(os.getenv("CRUDREPO_BATCH_SIZE", BATCH_SIZE))
    crudrepo.settings.MAX_OPTIMISTIC_RETRIES = int(
        os.getenv("CRUDREPO_MAX_OPTIMISTIC_RETRIES", MAX_OPTIMISTIC_RETRIES)
    )
    crudrepo.settings.WORKER_COUNT = int(
        os.getenv("CRUDREPO_WORKER_COUNT", WORKER_COUNT)
    )
