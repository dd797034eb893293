from pymongo import MongoClient
from pymongo.collection import Collection

from crudrepo import settings


def get_client() -> MongoClient:
    """Open a connection to the MongoDB server described by the settings."""

    return MongoClient(
        settings.MONGO_HOST,
        settings.MONGO_PORT,
        username=settings.MONGO_USERNAME,
        password=settings.MONGO_PASSWORD,
        tls=settings.MONGO_TLS,
    )


def get_collection(
    collection_name: str, db_name: str = None, conn: MongoClient = None
) -> Collection:
    """Retrieve connection to the specified database collection.

    :param collection_name: Name of the collection.
    :type collection_name: str
    :param db_name: Database holding the collection, defaults to settings.MONGO_DB.
    :type db_name: str, optional
    :param conn: Reuse an existing client, defaults to a new one.
    :type conn: MongoClient, optional
    """

    conn = conn if conn is not None else get_client()
    db_name = db_name if db_name is not None else settings.MONGO_DB

    return conn[db_name if db_name else "default"][collection_name]
