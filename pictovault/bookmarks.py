from .errors import BadRequest
from .utils import normalize_language, normalize_text

MAX_SAVED = 200


def _user(user_id):
    user = normalize_text(user_id)
    if not user:
        raise BadRequest("Missing user id")
    return user


def _picto_id(arasaac_id):
    try:
        value = int(arasaac_id)
    except (TypeError, ValueError):
        raise BadRequest("Invalid pictogram id") from None
    if value <= 0:
        raise BadRequest("Invalid pictogram id")
    return value


class BookmarkTracker:
    """Per-user saved pictograms. Independent of whether the pictogram is cached."""

    def __init__(self, store):
        self.store = store

    def save(self, user_id, arasaac_id, label=None):
        self.store.save_bookmark(_user(user_id), _picto_id(arasaac_id), label)

    def unsave(self, user_id, arasaac_id):
        return self.store.delete_bookmark(_user(user_id), _picto_id(arasaac_id))

    def record_use(self, user_id, arasaac_id):
        return self.store.increment_bookmark_use(_user(user_id), _picto_id(arasaac_id))

    def list(self, user_id, language):
        return self.store.list_bookmarks(_user(user_id), normalize_language(language), limit=MAX_SAVED)

    def saved_ids(self, user_id):
        return self.store.bookmark_ids(_user(user_id))
