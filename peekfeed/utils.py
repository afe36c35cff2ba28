import time

from peekfeed.database import db


def now():
    return time.time()


def upsert(model, keys, **values):
    """
    Fetch the row matching `keys` or stage a new one, then apply `values`.
    The caller commits.
    """
    instance = model.query.filter_by(**keys).first()
    created = instance is None
    if created:
        instance = model(**keys)
        db.session.add(instance)

    for key, value in values.items():
        setattr(instance, key, value)
    return instance, created
