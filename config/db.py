import os

from tortoise import Tortoise, connections

from config.settings import DATABASE_URL

MODELS = ['apps.fragments.models']


async def init_db(db_url: str | None = None) -> None:
    db_url = db_url or DATABASE_URL
    if db_url.startswith('sqlite://') and not db_url.endswith(':memory:'):
        dirpath = os.path.dirname(db_url[len('sqlite://'):])
        if dirpath:
            os.makedirs(dirpath, exist_ok=True)
    await Tortoise.init(db_url=db_url, modules={'models': MODELS})
    await Tortoise.generate_schemas(safe=True)


async def close_db() -> None:
    await connections.close_all()
